"""
Tests for loading the static school dataset and LGA mapping
"""
import json
import logging

from exam_portal.services.reference_data import LgaMapping, SchoolDirectory


def test_school_dataset_from_json(tmp_path):
    path = tmp_path / "schools.json"
    path.write_text(json.dumps([
        {"lgaCode": "LG01", "lCode": "1", "schCode": "001", "progID": "2", "schName": "Central School", "id": "1"},
    ]), encoding="utf-8")

    directory = SchoolDirectory.from_file(str(path))

    assert len(directory) == 1
    assert directory.school_name("001", "LG01") == "Central School"


def test_school_dataset_from_converted_csv(tmp_path):
    path = tmp_path / "schools.csv"
    path.write_bytes(
        "\ufefflga,l,sch,prog,name,id\n"
        "LG01,1,001,2,\"St. Mary's, Central\",1\n"
        "\n"
        "LG02,2,014,2,Riverside Academy,2\n".encode("utf-8")
    )

    directory = SchoolDirectory.from_file(str(path))

    assert len(directory) == 2
    assert directory.school_name("001", "LG01") == "St. Mary's, Central"
    assert directory.entries[1].l_code == "2"
    assert directory.entries[1].prog_id == "2"


def test_empty_reference_files_are_reported(tmp_path, caplog):
    schools = tmp_path / "schools.json"
    schools.write_text("[]", encoding="utf-8")
    lgas = tmp_path / "lga_mapping.json"
    lgas.write_text("{}", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        directory = SchoolDirectory.from_file(str(schools))
        mapping = LgaMapping.from_file(str(lgas))

    assert len(directory) == 0
    assert mapping.resolve("LG01") == "LG01"
    assert "is empty" in caplog.text
    assert "LGA mapping" in caplog.text


def test_missing_school_dataset_is_empty(tmp_path):
    directory = SchoolDirectory.from_file(str(tmp_path / "missing.csv"))
    assert len(directory) == 0
