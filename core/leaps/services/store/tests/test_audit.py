"""Tests for :mod:`.store.audit`."""

import csv
import io
from unittest import TestCase

from .. import audit_log, list_audit, audit_csv
from .util import in_memory_db


class TestAuditLog(TestCase):
    """Audit entries can be listed and exported."""

    def test_list_and_filter(self):
        with in_memory_db():
            audit_log('adm1', 'CREATE_BADGE', 'STARTER', {'badgeName': 'S'})
            audit_log('adm1', 'UPDATE_USER', 'u1')
            audit_log('system', 'KAJABI_POINTS_AWARDED', 'u1')

            everything = list_audit()
            self.assertEqual(everything['pagination']['total'], 3)
            self.assertEqual(everything['logs'][0]['action'],
                             'KAJABI_POINTS_AWARDED')

            by_admin = list_audit(actor_id='adm1')
            self.assertEqual(by_admin['pagination']['total'], 2)

            on_user = list_audit(target_id='u1', action='UPDATE_USER')
            self.assertEqual(len(on_user['logs']), 1)
            self.assertEqual(on_user['logs'][0]['meta'], {})

    def test_pagination(self):
        with in_memory_db():
            for i in range(5):
                audit_log('adm1', 'UPDATE_USER', f'u{i}')
            page = list_audit(page=2, limit=2)
            self.assertEqual(len(page['logs']), 2)
            self.assertEqual(page['pagination'],
                             {'page': 2, 'limit': 2, 'total': 5, 'pages': 3})

    def test_csv_export(self):
        with in_memory_db():
            audit_log('adm1', 'CREATE_BADGE', 'STARTER', {'badgeName': 'S'})
            rows = list(csv.reader(io.StringIO(audit_csv())))
            self.assertEqual(rows[0], ['id', 'created_at', 'actor_id',
                                       'action', 'target_id', 'meta'])
            self.assertEqual(rows[1][2:5], ['adm1', 'CREATE_BADGE',
                                            'STARTER'])
            self.assertIn('badgeName', rows[1][5])
