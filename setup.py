"""Install the MS Elevate LEAPS tracker core package.

This includes the domain, persistence, Kajabi integration and the admin
HTTP API. The participant-facing frontend lives elsewhere.
"""

from setuptools import setup, find_packages

setup(
    name='elevate-leaps-core',
    version='0.4.0',
    package_dir={'': 'core'},
    packages=find_packages(where='core'),
    zip_safe=False,
    install_requires=[
        'flask',
        'bleach',
        'unidecode',
        'python-dateutil',
        'sqlalchemy',
        'flask-sqlalchemy',
        'redis',
        'requests',
        'retry',
        'pytz',
        'PyJWT',
        'mimesis',
    ],
    extras_require={
        'test': ['pytest', 'mimesis'],
    },
    package_data={'leaps': ['templates/leaps/*']},
    include_package_data=True
)
