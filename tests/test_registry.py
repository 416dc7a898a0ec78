"""
Tests for patient registration, the user directory and reports.
"""

import pytest


class TestRegistration:
    """Test patient intake and deletion."""

    def test_register_bills_consultation_fee(self, engine, medtech, juan_form):
        patient = engine.patients.register(juan_form, actor=medtech)

        assert patient.full_name == "Juan Dela Cruz"
        lines = engine.billing.list()
        assert len(lines) == 1
        assert lines[0].test_name == "Patient Registration/Consultation"
        assert lines[0].amount == 150
        assert lines[0].status.value == "unpaid"
        assert lines[0].patient_id == patient.id

        entries = engine.audit.list()
        assert len(entries) == 1
        assert entries[0].action.value == "edit"
        assert "Juan Dela Cruz" in entries[0].description
        assert "₱150.00" in entries[0].description

    def test_mobile_number_normalised(self, engine, medtech, juan_form):
        juan_form["contact_no"] = "0917-123 4567"
        patient = engine.patients.register(juan_form, actor=medtech)
        assert patient.contact_no == "+639171234567"

    @pytest.mark.parametrize("number,expected", [
        ("09171234567", "+639171234567"),
        ("+639171234567", "+639171234567"),
        ("639171234567", "+639171234567"),
        ("0917 123 4567", "+639171234567"),
        ("(02) 8123 4567", None),
        ("0917123456", None),
        ("0817123456a", None),
        ("", None),
    ])
    def test_normalize_mobile(self, number, expected):
        from cognilab.engines import normalize_mobile

        assert normalize_mobile(number) == expected

    def test_missing_fields_reported_together(self, engine, medtech):
        from cognilab.engines import ValidationError

        with pytest.raises(ValidationError) as exc:
            engine.patients.register({"first_name": "Juan", "age": 0}, actor=medtech)
        errors = exc.value.errors
        assert errors["patient_id_no"] == "Patient ID is required"
        assert errors["age"] == "Valid age is required"
        assert errors["contact_no"] == "Contact number is required"
        assert errors["allergy"] == "Allergy information is required"
        assert "first_name" not in errors
        assert engine.billing.list() == []

    def test_invalid_mobile_rejected(self, engine, medtech, juan_form):
        from cognilab.engines import ValidationError

        juan_form["contact_no"] = "(02) 8123 4567"
        with pytest.raises(ValidationError) as exc:
            engine.patients.register(juan_form, actor=medtech)
        assert exc.value.errors["contact_no"] == "Invalid Philippine mobile number."

    def test_duplicate_patient_id_rejected(self, engine, medtech, juan_form):
        from cognilab.engines import BusinessRuleError

        engine.patients.register(juan_form, actor=medtech)
        with pytest.raises(BusinessRuleError) as exc:
            engine.patients.register({**juan_form, "first_name": "Pedro"}, actor=medtech)
        assert exc.value.message == "Patient ID already exists"
        assert len(engine.patients.list()) == 1
        assert len(engine.billing.list()) == 1

    def test_demographics_complete_flag(self, engine, medtech, juan_form):
        patient = engine.patients.register(juan_form, actor=medtech)
        assert patient.demographics_complete is True

    def test_update_demographics(self, engine, medtech, juan_form):
        patient = engine.patients.register(juan_form, actor=medtech)
        updated = engine.patients.update(patient.id, {"municipality": "Makati"}, actor=medtech)

        assert updated.municipality == "Makati"
        assert "municipality" in engine.audit.list()[0].description

    def test_patient_id_is_immutable(self, engine, medtech, juan_form):
        from cognilab.engines import BusinessRuleError

        patient = engine.patients.register(juan_form, actor=medtech)
        with pytest.raises(BusinessRuleError):
            engine.patients.update(patient.id, {"patient_id_no": "P-9999"}, actor=medtech)

    def test_delete_cascades(self, engine, medtech, juan_form):
        patient = engine.patients.register(juan_form, actor=medtech)
        engine.results.create(patient.full_name, "CLINICAL CHEMISTRY", "Blood Glucose", "95",
                              actor=medtech, patient_id=patient.id)
        # Legacy row linked only by name
        engine.results.create(patient.full_name, "SEROLOGY", "Dengue Test", "Negative", actor=medtech)
        # Same name is not enough once a row belongs to another patient
        engine.results.create(patient.full_name, "SEROLOGY", "HIV Test", "Negative",
                              actor=medtech, patient_id="someone-else")

        assert engine.patients.delete(patient.id, actor=medtech)

        assert engine.patients.get(patient.id) is None
        remaining = engine.results.list()
        assert [r.test_name for r in remaining] == ["HIV Test"]
        assert [e.test_name for e in engine.billing.list()] == ["HIV Test"]
        entry = engine.audit.list()[0]
        assert entry.action.value == "delete"
        assert "2 test results" in entry.description
        assert "3 billing entries" in entry.description

    def test_search(self, engine, medtech, juan_form):
        engine.patients.register(juan_form, actor=medtech)
        engine.patients.register({
            **juan_form, "patient_id_no": "P-0002", "first_name": "Maria", "last_name": "Santos",
        }, actor=medtech)

        assert [p.first_name for p in engine.patients.list("santos")] == ["Maria"]
        assert [p.first_name for p in engine.patients.list("p-0001")] == ["Juan"]
        assert len(engine.patients.list()) == 2


class TestUserDirectory:
    """Test account management and the role caps."""

    def _form(self, n, role="member"):
        return {
            "full_name": f"Tech {n}",
            "email": f"tech{n}@clinic.com",
            "role": role,
            "department": "Hematology",
        }

    def test_create_issues_encryption_key(self, engine, faculty):
        import re

        user = engine.users.create(self._form(1), actor=faculty)
        assert re.fullmatch(r"ENC_KEY_[A-Z0-9]{9}", user.encryption_key)
        assert engine.audit.list()[0].user_name == "BSMT Faculty Member"

    def test_member_cap(self, engine, faculty):
        from cognilab.engines import BusinessRuleError

        # Fixtures hold one member already
        for n in range(7):
            engine.users.create(self._form(n), actor=faculty)
        assert engine.users.counts()["member"] == 8

        with pytest.raises(BusinessRuleError) as exc:
            engine.users.create(self._form(99), actor=faculty)
        assert exc.value.message == "Maximum 8 member users allowed"
        assert engine.users.counts()["member"] == 8

    def test_faculty_cap(self, engine, faculty):
        from cognilab.engines import BusinessRuleError

        with pytest.raises(BusinessRuleError) as exc:
            engine.users.create(self._form(1, role="faculty"), actor=faculty)
        assert exc.value.message == "Maximum 1 faculty user allowed"

    def test_role_change_respects_cap(self, engine, faculty):
        from cognilab.engines import BusinessRuleError

        with pytest.raises(BusinessRuleError):
            engine.users.update("user-001", {"role": "faculty"}, actor=faculty)
        assert engine.users.get("user-001").role.value == "member"

    def test_editing_faculty_does_not_count_itself(self, engine, faculty):
        updated = engine.users.update("user-009", {"department": "Admin"}, actor=faculty)
        assert updated.department == "Admin"
        assert updated.encryption_key == "ENC_KEY_ADMIN"

    def test_validation(self, engine, faculty):
        from cognilab.engines import ValidationError

        with pytest.raises(ValidationError) as exc:
            engine.users.create({"full_name": "", "email": "", "department": ""}, actor=faculty)
        assert exc.value.errors == {
            "full_name": "Full name is required",
            "email": "Email is required",
            "department": "Department is required",
        }
        with pytest.raises(ValidationError) as exc:
            engine.users.create({**self._form(1), "email": "not-an-email"}, actor=faculty)
        assert "email" in exc.value.errors

    def test_non_text_fields_are_coerced(self, engine, faculty):
        from cognilab.engines import ValidationError

        user = engine.users.create({**self._form(1), "full_name": 1234}, actor=faculty)
        assert user.full_name == "1234"

        with pytest.raises(ValidationError) as exc:
            engine.users.create({**self._form(2), "email": 42}, actor=faculty)
        assert "email" in exc.value.errors

    def test_duplicate_email(self, engine, faculty):
        from cognilab.engines import BusinessRuleError

        with pytest.raises(BusinessRuleError):
            engine.users.create({**self._form(1), "email": "MedTech@clinic.com"}, actor=faculty)

    def test_delete(self, engine, faculty):
        assert engine.users.delete("user-001", actor=faculty)
        assert engine.users.get("user-001") is None
        assert engine.audit.list()[0].action.value == "delete"

    def test_cannot_delete_self(self, engine, faculty):
        from cognilab.engines import BusinessRuleError

        with pytest.raises(BusinessRuleError):
            engine.users.delete("user-009", actor=faculty)


class TestReports:
    """Test the patient report and dashboards."""

    def _register(self, engine, actor, form):
        return engine.patients.register(form, actor=actor)

    def test_report_flags_results(self, engine, medtech, juan_form):
        patient = self._register(engine, medtech, juan_form)
        engine.results.create(patient.full_name, "CLINICAL CHEMISTRY", "Blood Glucose", "130",
                              actor=medtech, patient_id=patient.id)
        engine.results.create(patient.full_name, "SEROLOGY", "Dengue Test", "Negative",
                              actor=medtech, patient_id=patient.id)

        report = engine.reports.patient_report(patient.id)
        flags = {line.test_name: line.flag.value for line in report.lines}
        assert flags == {"Blood Glucose": "high", "Dengue Test": "normal"}
        assert report.abnormal_count == 1
        assert report.pathologist == "Elizabeth Chua, MD, FPSP"

    def test_report_paid_only_when_every_result_paid(self, engine, medtech, juan_form):
        patient = self._register(engine, medtech, juan_form)
        first = engine.results.create(patient.full_name, "CLINICAL CHEMISTRY", "Blood Glucose", "95",
                                      actor=medtech, patient_id=patient.id)
        second = engine.results.create(patient.full_name, "SEROLOGY", "Dengue Test", "Negative",
                                       actor=medtech, patient_id=patient.id)

        engine.billing.set_status(first.billing_id, "paid", or_number="OR-1")
        assert engine.reports.patient_report(patient.id).billing_status.value == "unpaid"

        engine.billing.set_status(second.billing_id, "paid", or_number="OR-2")
        assert engine.reports.patient_report(patient.id).billing_status.value == "paid"

    def test_report_without_results_is_unpaid(self, engine, medtech, juan_form):
        patient = self._register(engine, medtech, juan_form)
        line = engine.billing.list()[0]
        engine.billing.set_status(line.id, "paid", or_number="OR-1")

        report = engine.reports.patient_report(patient.id)
        assert report.lines == []
        assert report.billing_status.value == "unpaid"

    def test_panel_results_follow_parent_line(self, engine, medtech, juan_form):
        patient = self._register(engine, medtech, juan_form)
        results = engine.results.create_panel(patient.full_name, "HEMATOLOGY", "CBC", [
            {"test_name": "Neutrophils", "value": "50"},
            {"test_name": "Lymphocytes", "value": "30"},
        ], actor=medtech, patient_id=patient.id)

        engine.billing.set_status(results[0].billing_id, "paid", or_number="OR-3")
        report = engine.reports.patient_report(patient.id)
        assert report.billing_status.value == "paid"

    def test_download_is_audited(self, engine, medtech, juan_form):
        patient = self._register(engine, medtech, juan_form)
        engine.reports.patient_report(patient.id, actor=medtech, download=True)
        assert engine.audit.list()[0].action.value == "download"

    def test_missing_patient(self, engine):
        assert engine.reports.patient_report("nope") is None

    def test_dashboard(self, engine, medtech, juan_form):
        patient = self._register(engine, medtech, juan_form)
        result = engine.results.create(patient.full_name, "CLINICAL CHEMISTRY", "Blood Glucose", "95",
                                       actor=medtech, patient_id=patient.id)
        engine.results.advance(result.id, actor=medtech)

        dashboard = engine.reports.dashboard()
        assert dashboard.patient_count == 1
        assert dashboard.result_count == 1
        assert dashboard.results_by_status["encoding"] == 1
        assert dashboard.results_by_status["pending"] == 0
        assert dashboard.billing.unpaid_count == 2
        assert dashboard.billing.total_unpaid_amount == 400

    def test_audit_summary(self, engine, medtech, juan_form):
        engine.audit.append("login", resource="CogniLab", resource_type="auth",
                            description="in", actor=medtech)
        self._register(engine, medtech, juan_form)

        summary = engine.reports.audit_summary()
        assert summary.active_sessions == 0
        assert summary.action_counts["edit"] == 1
        assert summary.total_entries == 2
