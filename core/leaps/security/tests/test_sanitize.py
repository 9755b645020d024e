"""Tests for :mod:`leaps.security.sanitize`."""

from unittest import TestCase

from .. import sanitize
from ..sanitize import ContentValidationError


class TestSanitizeText(TestCase):
    """Free text is stripped of markup and escaped."""

    def test_markup(self):
        self.assertEqual(
            sanitize.sanitize_text('<b>Hello</b> <script>x</script>world'),
            'Hello xworld'
        )

    def test_escape(self):
        self.assertEqual(sanitize.sanitize_text('a "quoted" = b/c'),
                         'a &quot;quoted&quot; &#x3D; b&#x2F;c')
        self.assertEqual(sanitize.sanitize_text('Tom & Jerry'),
                         'Tom &amp; Jerry')

    def test_newlines(self):
        self.assertEqual(sanitize.sanitize_text('a\r\n\n\n\nb'), 'a\n\nb')
        self.assertEqual(
            sanitize.sanitize_text('a\nb', allow_newlines=False), 'a b'
        )

    def test_spaces(self):
        self.assertEqual(
            sanitize.sanitize_text('a    b', preserve_spaces=False), 'a b'
        )
        self.assertEqual(sanitize.sanitize_text('a    b'), 'a    b')

    def test_truncate_at_word(self):
        text = sanitize.sanitize_text('word ' * 10, max_length=22)
        self.assertEqual(text, 'word word word word...')

    def test_truncate_long_word(self):
        self.assertEqual(sanitize.sanitize_text('a' * 20, max_length=10),
                         'a' * 10 + '...')

    def test_not_a_string(self):
        with self.assertRaises(ContentValidationError) as ctx:
            sanitize.sanitize_text(42)
        self.assertEqual(ctx.exception.field, 'input')

    def test_urls(self):
        text = sanitize.sanitize_text('see https://javascript.example',
                                      allow_urls=True)
        self.assertEqual(text, 'see [INVALID URL REMOVED]')


class TestSanitizeURL(TestCase):

    def test_safe(self):
        self.assertEqual(sanitize.sanitize_url(' https://example.com/a?b=1 '),
                         'https://example.com/a?b=1')
        self.assertEqual(sanitize.sanitize_url('mailto:a@example.com'),
                         'mailto:a@example.com')

    def test_bare_host(self):
        self.assertEqual(sanitize.sanitize_url('example.com/path'),
                         'https://example.com/path')

    def test_unsafe(self):
        self.assertIsNone(sanitize.sanitize_url('javascript:alert(1)'))
        self.assertIsNone(sanitize.sanitize_url('data:text/html,hi'))
        self.assertIsNone(sanitize.sanitize_url('ftp://example.com'))
        self.assertIsNone(sanitize.sanitize_url('https://data.example.com'))
        self.assertIsNone(sanitize.sanitize_url(''))
        self.assertIsNone(sanitize.sanitize_url(None))
        self.assertIsNone(
            sanitize.sanitize_url('https://example.com/' + 'a' * 2048)
        )


class TestContactDetails(TestCase):

    def test_email(self):
        self.assertEqual(sanitize.sanitize_email(' Ana@Example.COM '),
                         'ana@example.com')
        self.assertIsNone(sanitize.sanitize_email('not an email'))
        self.assertIsNone(sanitize.sanitize_email('a@b'))

    def test_phone(self):
        self.assertEqual(sanitize.sanitize_phone('+62 (812) 555-0100'),
                         '+628125550100')
        self.assertIsNone(sanitize.sanitize_phone('12345'))
        self.assertIsNone(sanitize.sanitize_phone('1' * 21))


class TestSubmissionPayload(TestCase):
    """Payloads are reduced to the known fields for each stage."""

    def test_amplify(self):
        payload = sanitize.sanitize_submission_payload('AMPLIFY', {
            'peers_trained': '70',
            'students_trained': 12,
            'session_date': '2025-03-01',
            'session_start_time': '09:30',
            'location': {'city': '<i>Bandung</i>', 'extra': 'x'},
            'evidence_note': 'Great <b>session</b>',
            'unexpected': 'dropped'
        })
        self.assertEqual(payload, {
            'peers_trained': 50,
            'students_trained': 12,
            'session_date': '2025-03-01',
            'session_start_time': '09:30',
            'location': {'city': 'Bandung'},
            'evidence_note': 'Great session'
        })

    def test_learn(self):
        payload = sanitize.sanitize_submission_payload('learn', {
            'provider': 'Kajabi',
            'course_name': 'AI <script>x</script>Basics',
            'certificate_url': 'javascript:alert(1)',
            'completed_at': '2025-02-10T08:00:00Z'
        })
        self.assertEqual(payload, {'provider': 'Kajabi',
                                   'course_name': 'AI xBasics',
                                   'completed_at': '2025-02-10'})

    def test_present(self):
        payload = sanitize.sanitize_submission_payload('PRESENT', {
            'linkedin_url': 'https://www.linkedin.com/posts/123',
            'screenshot_url': 'https://example.com/shot.png',
            'caption': 'My post'
        })
        self.assertEqual(payload['linkedin_url'],
                         'https://www.linkedin.com/posts/123')
        payload = sanitize.sanitize_submission_payload(
            'PRESENT', {'linkedin_url': 'https://example.com/post'}
        )
        self.assertNotIn('linkedin_url', payload)

    def test_unknown_stage(self):
        payload = sanitize.sanitize_submission_payload('OTHER', {
            'note': '<b>hi</b>', 'count': 3, 'flag': True, 'nested': {}
        })
        self.assertEqual(payload, {'note': 'hi', 'count': 3, 'flag': True})


class TestUserProfile(TestCase):

    def test_profile(self):
        profile = sanitize.sanitize_user_profile({
            'name': ' Ana <b>Putri</b> ',
            'handle': 'Ana.Putri!',
            'website': 'example.org',
            'bio': 'Teacher',
            'ignored': 'x'
        })
        self.assertEqual(profile, {'name': 'Ana Putri',
                                   'handle': 'anaputri',
                                   'website': 'https://example.org',
                                   'bio': 'Teacher'})

    def test_bad_handle(self):
        self.assertNotIn('handle',
                         sanitize.sanitize_user_profile({'handle': 'a!'}))


class TestDangerousContent(TestCase):

    def test_patterns(self):
        for text in ('<SCRIPT>', 'javascript:void(0)', 'onload = x',
                     'eval(x)', '<iframe src=x>', 'import (x)'):
            self.assertTrue(sanitize.contains_dangerous_content(text), text)
        self.assertFalse(sanitize.contains_dangerous_content('hello world'))

    def test_validate(self):
        with self.assertRaises(ContentValidationError) as ctx:
            sanitize.validate_content_security('<script>', 'bio')
        self.assertEqual(ctx.exception.field, 'bio')
        sanitize.validate_content_security('fine', 'bio')

    def test_batch(self):
        self.assertEqual(
            sanitize.sanitize_batch({'a': '<b>x</b>', 'b': None}),
            {'a': 'x', 'b': ''}
        )
