"""
Patient Record Handlers
List, create, update and delete patient records.
"""

from typing import Any

from models import PatientCreate, PatientUpdate
from query.access import Caller
from .common import dump, parse_body, parse_flag, parse_id


async def handle_list_records(arguments: dict, repos: Any, caller: Caller) -> list:
    """
    Handle GET /records

    Query: q (name search), sex (M|F), order (asc|desc), limit (1-500),
    all=1 (administrators: every clinician), mine=1 (administrators: own only)
    """
    patients = await repos.patients.list_patients(
        caller,
        search=arguments.get("q"),
        sex=arguments.get("sex"),
        order=arguments.get("order"),
        limit=arguments.get("limit"),
        show_all=parse_flag(arguments.get("all")),
        mine=parse_flag(arguments.get("mine")),
    )
    return dump(patients)


async def handle_create_record(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle POST /records"""
    data = parse_body(PatientCreate, arguments)
    patient = await repos.patients.create_patient(caller, data)
    return dump(patient)


async def handle_update_record(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle PUT /records/{id} - partial update, sex is immutable"""
    patient_id = parse_id(arguments.get("id"))
    body = {key: value for key, value in arguments.items() if key != "id"}
    data = parse_body(PatientUpdate, body)
    patient = await repos.patients.update_patient(caller, patient_id, data)
    return dump(patient)


async def handle_delete_record(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Handle DELETE /records/{id}"""
    patient_id = parse_id(arguments.get("id"))
    await repos.patients.delete_patient(caller, patient_id)
    return {"ok": True}
