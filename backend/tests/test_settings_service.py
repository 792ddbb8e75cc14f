import unittest
from decimal import Decimal

from flask import Flask

from labtrace.errors import ValidationFailed
from labtrace.extensions import db
from labtrace.models import AuditLog, LabConfiguration
from labtrace.permissions import Role
from labtrace.services import settings_service
from labtrace.services.permission_service import Actor


class LabConfigServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
            DEFAULT_TAX_RATE=Decimal("9.50"),
            DEFAULT_PAYMENT_TERMS_DAYS=14,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from labtrace import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(AuditLog).delete()
        db.session.query(LabConfiguration).delete()
        db.session.commit()
        self.admin = Actor(user_id=1, role=Role.ADMIN)

    def test_defaults_come_from_app_config(self):
        config = settings_service.get_lab_config()
        self.assertEqual(config.default_tax_rate, Decimal("9.50"))
        self.assertEqual(config.default_payment_terms, 14)

    def test_reading_never_writes(self):
        settings_service.get_lab_config()
        settings_service.get_lab_config()
        db.session.commit()
        self.assertEqual(db.session.query(LabConfiguration).count(), 0)

    def test_update_creates_singleton_and_audits(self):
        settings_service.update_lab_config(
            {"lab_name": "Zobotehnika Novak", "default_tax_rate": "22"}, actor=self.admin
        )
        settings_service.update_lab_config({"iban": "SI56 0123 4567 8901 234"}, actor=self.admin)

        self.assertEqual(db.session.query(LabConfiguration).count(), 1)
        config = settings_service.get_lab_config()
        self.assertEqual(config.lab_name, "Zobotehnika Novak")
        self.assertEqual(config.default_tax_rate, Decimal("22"))
        self.assertEqual(
            db.session.query(AuditLog).filter_by(entity_type="LabConfiguration", action="UPDATE").count(), 2
        )

    def test_tax_rate_over_hundred_rejected(self):
        with self.assertRaises(ValidationFailed):
            settings_service.update_lab_config({"default_tax_rate": "101"}, actor=self.admin)
        self.assertEqual(db.session.query(LabConfiguration).count(), 0)

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValidationFailed):
            settings_service.update_lab_config({"currency": "EUR"}, actor=self.admin)

    def test_lab_name_cannot_be_blanked(self):
        with self.assertRaises(ValidationFailed):
            settings_service.update_lab_config({"lab_name": "  "}, actor=self.admin)


if __name__ == "__main__":
    unittest.main()
