from services import provinces


def test_four_digit_zip_is_padded():
    assert provinces.normalize_zip("8001") == "08001"
    assert provinces.normalize_zip(" 28001 ") == "28001"
    assert provinces.normalize_zip("") == ""


def test_non_numeric_zip_is_left_alone():
    assert provinces.normalize_zip("ABCD") == "ABCD"


def test_resolve_province_from_prefix():
    assert provinces.resolve_province("28001") == "Madrid"
    assert provinces.resolve_province("08001") == "Barcelona"
    assert provinces.resolve_province("51001") == "Ceuta"


def test_resolve_province_unknown_or_malformed():
    assert provinces.resolve_province("99001") == ""
    assert provinces.resolve_province("280") == ""
    assert provinces.resolve_province("2800") == "Albacete"
    assert provinces.resolve_province("") == ""
    assert provinces.resolve_province(None) == ""
