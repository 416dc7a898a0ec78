"""
Tests for the reference catalog and the abnormal-value classifier.
"""

import pytest


class TestCatalog:
    """Test price and range lookups."""

    def test_price_lookup(self, catalog):
        assert catalog.price("CLINICAL CHEMISTRY", "Blood Glucose") == 250
        assert catalog.price("HEMATOLOGY", "CBC") == 400

    def test_unknown_test_uses_default_price(self, catalog):
        assert catalog.price("CLINICAL CHEMISTRY", "Made Up Test") is None
        assert catalog.price_or_default("CLINICAL CHEMISTRY", "Made Up Test") == 300
        assert catalog.price_or_default("NO SUCH SECTION", "Blood Glucose") == 300

    def test_component_without_price_uses_default(self, catalog):
        assert catalog.price("HEMATOLOGY", "Neutrophils") is None
        assert catalog.price_or_default("HEMATOLOGY", "Neutrophils") == 300

    def test_range_lookup(self, catalog):
        ref = catalog.range("CLINICAL CHEMISTRY", "Blood Glucose")
        assert ref.min == 70
        assert ref.max == 100
        assert ref.unit == "mg/dL"
        assert ref.display() == "70 - 100"

    def test_range_display_variants(self, catalog):
        assert catalog.range("CLINICAL CHEMISTRY", "Cholesterol").display() == "< 200"
        assert catalog.range("CLINICAL CHEMISTRY", "HDL Cholesterol").display() == "> 40"
        assert catalog.range("SEROLOGY", "Dengue Test").display() == "Negative"
        assert catalog.range("CLINICAL CHEMISTRY", "Creatinine").display() == "0.7 - 1.3"

    def test_unknown_range(self, catalog):
        assert catalog.range("SEROLOGY", "Made Up Test") is None

    def test_component_registry(self, catalog):
        assert catalog.parent_of("HEMATOLOGY", "Neutrophils") == "CBC"
        assert catalog.parent_of("HEMATOLOGY", "MCV") == "RBC Indices (MCV, MCH, RDW)"
        assert catalog.parent_of("PARASITOLOGY", "UA pH") == "Routine Urinalysis (UA)"
        assert catalog.parent_of("HEMATOLOGY", "Hemoglobin") is None
        assert catalog.is_component("MICROBIOLOGY", "Culture")
        assert not catalog.is_component("MICROBIOLOGY", "Gram Stain")

    def test_component_scoped_by_section(self, catalog):
        assert catalog.parent_of("CLINICAL CHEMISTRY", "Neutrophils") is None

    def test_billing_test_name(self, catalog):
        assert catalog.billing_test_name("HEMATOLOGY", "Lymphocytes") == "CBC"
        assert catalog.billing_test_name("HEMATOLOGY", "Hemoglobin") == "Hemoglobin"

    def test_components_of(self, catalog):
        assert catalog.components_of("HEMATOLOGY", "CBC") == [
            "Neutrophils", "Lymphocytes", "Monocytes", "Eosinophils", "Basophils",
        ]
        assert catalog.components_of("HEMATOLOGY", "Hemoglobin") == []

    def test_sections_and_tests(self, catalog):
        assert "HEMATOLOGY" in catalog.sections()
        names = [t.name for t in catalog.tests("HEMATOLOGY", include_components=False)]
        assert "CBC" in names
        assert "Neutrophils" not in names

    def test_consultation_fee(self, catalog):
        assert catalog.consultation_fee == 150
        assert catalog.consultation_test_name == "Patient Registration/Consultation"

    def test_from_dict_swaps_prices(self):
        from knowledge.lab import ReferenceCatalog

        custom = ReferenceCatalog.from_dict({
            "default_price": 500,
            "sections": {"CHEM": {"Glucose": {"price": 99, "min": 1, "max": 2}}},
        })
        assert custom.price("CHEM", "Glucose") == 99
        assert custom.price_or_default("CHEM", "Other") == 500

    def test_from_dict_rejects_unknown_parent(self):
        from knowledge.lab import ReferenceCatalog

        with pytest.raises(ValueError):
            ReferenceCatalog.from_dict({
                "sections": {"HEME": {"A": {"min": 1}}},
                "components": {"HEME": {"Panel": ["A"]}},
            })


    def test_catalog_path_override(self, catalog, tmp_path, monkeypatch):
        from knowledge.lab import get_catalog, reset_catalog, set_catalog

        path = tmp_path / "catalog.yaml"
        path.write_text("sections:\n  CHEM:\n    Glucose: {price: 42, min: 1, max: 2}\n")
        monkeypatch.setenv("COGNILAB_CATALOG_PATH", str(path))
        reset_catalog()
        try:
            assert get_catalog().price("CHEM", "Glucose") == 42
            assert get_catalog() is get_catalog()

            set_catalog(catalog)
            assert get_catalog() is catalog
        finally:
            reset_catalog()


class TestClassifier:
    """Test abnormal-value flagging."""

    @pytest.mark.parametrize("value,expected", [
        (95, "normal"),
        (120, "high"),
        (50, "low"),
        (70, "normal"),
        (100, "normal"),
        ("130 mg/dL", "high"),
        ("  65", "low"),
    ])
    def test_blood_glucose(self, catalog, value, expected):
        from cognilab.engines import classify

        assert classify(value, "Blood Glucose", "CLINICAL CHEMISTRY", catalog).value == expected

    def test_known_normal_text(self, catalog):
        from cognilab.engines import Flag, classify

        assert classify("Negative", "Dengue Test", "SEROLOGY", catalog) == Flag.NORMAL
        assert classify("NEGATIVE", "Dengue Test", "SEROLOGY", catalog) == Flag.NORMAL
        assert classify("No Growth", "Bacterial Culture", "MICROBIOLOGY", catalog) == Flag.NORMAL
        assert classify("Compatible", "Cross Matching", "BLOOD BANK", catalog) == Flag.NORMAL

    def test_qualitative_text_is_never_abnormal(self, catalog):
        from cognilab.engines import Flag, classify

        assert classify("Positive", "Dengue Test", "SEROLOGY", catalog) == Flag.NORMAL
        assert classify("abc", "Blood Glucose", "CLINICAL CHEMISTRY", catalog) == Flag.NORMAL

    def test_no_range_is_normal(self, catalog):
        from cognilab.engines import Flag, classify

        assert classify(9999, "Made Up Test", "CLINICAL CHEMISTRY", catalog) == Flag.NORMAL

    def test_max_only_range(self, catalog):
        from cognilab.engines import Flag, classify

        assert classify(250, "Cholesterol", "CLINICAL CHEMISTRY", catalog) == Flag.HIGH
        assert classify(0, "Cholesterol", "CLINICAL CHEMISTRY", catalog) == Flag.NORMAL

    def test_component_range(self, catalog):
        from cognilab.engines import Flag, classify

        assert classify("80", "Neutrophils", "HEMATOLOGY", catalog) == Flag.HIGH
        assert classify("10", "Lymphocytes", "HEMATOLOGY", catalog) == Flag.LOW

    def test_repeated_calls_agree(self, catalog):
        from cognilab.engines import classify

        first = [classify(v, "Blood Glucose", "CLINICAL CHEMISTRY", catalog) for v in (50, 95, 120)]
        second = [classify(v, "Blood Glucose", "CLINICAL CHEMISTRY", catalog) for v in (120, 95, 50)]
        assert first == list(reversed(second))

    def test_parse_numeric(self):
        from cognilab.engines import parse_numeric

        assert parse_numeric("7.5 mg/dL") == 7.5
        assert parse_numeric("-2") == -2
        assert parse_numeric(".5") == 0.5
        assert parse_numeric("abc") is None
        assert parse_numeric("") is None
        assert parse_numeric("nan") is None
        assert parse_numeric(True) is None
