"""
Column names and header aliases for the two upload formats

The registration format is the export column set without the leading S/N
column, so an export can be uploaded again unchanged.
"""
from typing import Dict, List, Tuple

# Examination results
RESULT_SUBJECTS: Tuple[str, ...] = (
    "ENG", "ARIT", "MTH", "GP", "BST", "RGS", "HST",
    "ARB", "CCA", "FRE", "NVS", "LLG", "PVS", "BUS",
)

RESULT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "session_yr": ("SESSIONYR",),
    "f_name": ("FNAME",),
    "m_name": ("MNAME",),
    "l_name": ("LNAME",),
    "date_of_birth": ("DATEOFBIRTH",),
    "sex_cd": ("SEXCD",),
    "institution_cd": ("INSTITUTIONCD",),
    # SCHOOLCOBE is a misspelling found in circulated templates
    "school_code": ("SCHOOLCODE", "SCHOOLCOBE"),
    "lga_cd": ("LGACD",),
    "examination_no": ("EXAMINATIONNO",),
    "rgs_type": ("RGSTYPE", "rgsType"),
    "remark": ("REMARK",),
    "access_pin": ("ACCESS_PIN", "ACCESS PIN"),
}

# Continuous assessment subjects, in export column order
CA_SUBJECTS: Tuple[str, ...] = (
    "ARB", "BST", "BUS", "CCA", "ENG", "FRE", "HST",
    "LLG", "MTH", "NVS", "PVS", "RGS", "TEC",
)
CA_YEARS: Tuple[str, ...] = ("year1", "year2", "year3")

REGISTRATION_ALIASES: Dict[str, Tuple[str, ...]] = {
    "year": ("school_session",),
    "prog_id": ("progID",),
    "student_number": ("Reg. No", "STUDENTNUMBER"),
    "acc_code": ("ACCESSCODE",),
    "lastname": ("Surename", "Surname"),
    "othername": ("Other Name(s)",),
    "firstname": ("First Name",),
    "gender": ("Gender",),
    "religious_type": ("rgsType",),
    "school_type": ("schType",),
    "school_code": ("schcode",),
    "lga_code": ("lgacode",),
    "date_of_birth": ("DATE OF BIRTH",),
}


def ca_column(subject: str, year_index: int) -> str:
    """Header of one CA cell, e.g. ca_column('ENG', 1) == 'ENGY1'"""
    return f"{subject}Y{year_index}"


def registration_columns() -> List[str]:
    columns = ["school_session", "progID", "Reg. No", "ACCESSCODE",
               "Surename", "Other Name(s)", "First Name", "Gender"]
    for subject in CA_SUBJECTS:
        columns.extend(ca_column(subject, i) for i in range(1, len(CA_YEARS) + 1))
    columns.extend(["rgsType", "schType", "schcode", "lgacode", "DATE OF BIRTH"])
    return columns


REGISTRATION_COLUMNS: List[str] = registration_columns()
EXPORT_HEADERS: List[str] = ["S/N"] + REGISTRATION_COLUMNS

# Religious study and school type codes used in CSV files
RELIGION_CODES: Dict[str, str] = {"1": "Christian", "2": "Islam"}
SCHOOL_TYPE_CODES: Dict[str, str] = {"1": "Private", "0": "Public"}
