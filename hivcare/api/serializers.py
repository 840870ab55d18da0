"""
ORM row → JSON-ready dict conversion for API responses and audit snapshots.
"""

from datetime import date, datetime
from typing import Optional


def iso(value) -> Optional[str]:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def client_brief(client) -> dict:
    return {
        "id": client.id,
        "client_code": client.client_code,
        "uic": client.uic,
        "legal_surname": client.legal_surname,
        "legal_first": client.legal_first,
        "preferred_name": client.preferred_name,
        "date_of_birth": iso(client.date_of_birth),
        "status": client.status,
        "last_visit_at": iso(client.last_visit_at),
        "contact_number": client.contact_number,
    }


def client_to_dict(client) -> dict:
    data = client_brief(client)
    data.update({
        "facility_id": client.facility_id,
        "current_facility_id": client.current_facility_id,
        "phil_health": client.phil_health,
        "legal_middle": client.legal_middle,
        "suffix": client.suffix,
        "sex_at_birth": client.sex_at_birth,
        "email": client.email,
        "home_address": client.home_address,
        "occupation": client.occupation,
        "case_manager_id": client.case_manager_id,
        "created_by_id": client.created_by_id,
        "date_enrolled": iso(client.date_enrolled),
        "notes": client.notes,
        "population_ids": [p.population_id for p in client.populations],
        "created_at": iso(client.created_at),
        "updated_at": iso(client.updated_at),
    })
    return data


def summary_to_dict(summary) -> Optional[dict]:
    if summary is None:
        return None
    return {
        "client_id": summary.client_id,
        "baseline_cd4": summary.baseline_cd4,
        "baseline_cd4_date": iso(summary.baseline_cd4_date),
        "first_viral_load_date": iso(summary.first_viral_load_date),
        "viral_load_status": summary.viral_load_status,
        "current_arv_regimen_id": summary.current_arv_regimen_id,
        "current_prep_regimen_id": summary.current_prep_regimen_id,
        "updated_at": iso(summary.updated_at),
    }


def encounter_to_dict(encounter) -> dict:
    return {
        "id": encounter.id,
        "client_id": encounter.client_id,
        "clinician_id": encounter.clinician_id,
        "date": iso(encounter.date),
        "type": encounter.type,
        "note": encounter.note,
    }


def lab_result_to_dict(result) -> dict:
    return {
        "id": result.id,
        "panel_id": result.panel_id,
        "test_type_id": result.test_type_id,
        "test_code": result.test_type.code if result.test_type else None,
        "value_num": result.value_num,
        "value_text": result.value_text,
        "unit": result.unit,
        "ref_low": result.ref_low,
        "ref_high": result.ref_high,
        "abnormal": result.abnormal,
    }


def lab_panel_to_dict(panel, include_results: bool = True) -> dict:
    data = {
        "id": panel.id,
        "client_id": panel.client_id,
        "encounter_id": panel.encounter_id,
        "panel_type_id": panel.panel_type_id,
        "panel_code": panel.panel_type.code if panel.panel_type else None,
        "ordered_at": iso(panel.ordered_at),
        "collected_at": iso(panel.collected_at),
        "reported_at": iso(panel.reported_at),
        "lab_name": panel.lab_name,
        "status": panel.status,
    }
    if include_results:
        data["results"] = [lab_result_to_dict(r) for r in panel.results]
    return data


def dispense_to_dict(dispense) -> dict:
    return {
        "id": dispense.id,
        "prescription_id": dispense.prescription_id,
        "dispensed_at": iso(dispense.dispensed_at),
        "quantity": dispense.quantity,
        "unit": dispense.unit,
        "days_supply": dispense.days_supply,
        "next_refill_date": iso(dispense.next_refill_date),
        "dispensed_by_id": dispense.dispensed_by_id,
        "note": dispense.note,
    }


def prescription_to_dict(prescription, recent_dispenses: int = 3) -> dict:
    dispenses = sorted(prescription.dispenses, key=lambda d: d.dispensed_at, reverse=True)
    return {
        "id": prescription.id,
        "client_id": prescription.client_id,
        "category": prescription.category,
        "regimen_id": prescription.regimen_id,
        "regimen_name": prescription.regimen.name if prescription.regimen else None,
        "medication_id": prescription.medication_id,
        "medication_name": prescription.medication.name if prescription.medication else None,
        "start_date": iso(prescription.start_date),
        "end_date": iso(prescription.end_date),
        "is_active": prescription.is_active,
        "prescriber_id": prescription.prescriber_id,
        "instructions": prescription.instructions,
        "reason_change": prescription.reason_change,
        "dispenses": [dispense_to_dict(d) for d in dispenses[:recent_dispenses]],
    }


def task_to_dict(task) -> dict:
    client = task.client
    return {
        "id": task.id,
        "client_id": task.client_id,
        "client": {
            "id": client.id,
            "client_code": client.client_code,
            "legal_surname": client.legal_surname,
            "legal_first": client.legal_first,
            "preferred_name": client.preferred_name,
        } if client else None,
        "type": task.type,
        "title": task.title,
        "description": task.description,
        "due_date": iso(task.due_date),
        "status": task.status,
        "payload": task.payload or {},
        "assigned_user_id": task.assigned_user_id,
        "assigned_role": task.assigned_role,
        "created_by_id": task.created_by_id,
        "completed_at": iso(task.completed_at),
        "created_at": iso(task.created_at),
    }


def client_detail_to_dict(detail: dict) -> dict:
    data = client_to_dict(detail["client"])
    data.update({
        "clinical_summary": summary_to_dict(detail["summary"]),
        "open_tasks": [task_to_dict(t) for t in detail["open_tasks"]],
        "encounters": [encounter_to_dict(e) for e in detail["encounters"]],
        "lab_panels": [lab_panel_to_dict(p) for p in detail["lab_panels"]],
        "prescriptions": [prescription_to_dict(p) for p in detail["prescriptions"]],
    })
    return data


def user_to_dict(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "roles": user.role_names,
        "facility_id": user.facility_id,
    }
