from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import translate_service_errors
from app.models import TileMasonAssignment
from app.schemas import (
    AssignmentCreate,
    AssignmentUpdate,
    ProgressCreate,
    ShortageCreate,
    ShortageStatusUpdate,
    ZoneCreate,
    ZoneUpdate,
)
from app.services.fulfillment_service import (
    create_shortage_request,
    list_shortage_requests,
    shortage_to_dict,
    update_shortage_status,
)
from app.services.mason_progress_service import (
    assignment_to_dict,
    create_assignment,
    list_assignments,
    list_progress,
    record_progress,
    update_assignment,
)
from app.services.notification_service import Notifier
from app.services.provider_factory import get_notifier
from app.services.requirement_ledger_service import (
    create_zone,
    delete_zone,
    list_room_requirements,
    list_zones,
    site_tile_report,
    update_zone,
    zone_to_dict,
)

router = APIRouter(prefix='/planner', tags=['planner'])


@router.get('/rooms/{room_id}/zones')
def zones_list(room_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Zones could not be loaded'):
        return list_zones(db, room_id=room_id)


@router.post('/rooms/{room_id}/zones', status_code=201)
def zones_create(room_id: int, payload: ZoneCreate, db: Session = Depends(get_db)):
    with translate_service_errors('Zone could not be saved'):
        zone = create_zone(
            db,
            room_id=room_id,
            zone_name=payload.zone_name,
            tile_id=payload.tile_id,
            area_sqft=payload.area_sqft,
            wastage_pct=payload.wastage_pct,
            required_qty=payload.required_qty,
            sort_order=payload.sort_order,
        )
    db.commit()
    return zone_to_dict(zone)


@router.patch('/rooms/{room_id}/zones/{zone_id}')
def zones_update(room_id: int, zone_id: int, payload: ZoneUpdate, db: Session = Depends(get_db)):
    with translate_service_errors('Zone could not be saved'):
        zone = update_zone(db, room_id=room_id, zone_id=zone_id, changes=payload.changes())
    db.commit()
    return zone_to_dict(zone)


@router.delete('/rooms/{room_id}/zones/{zone_id}')
def zones_delete(room_id: int, zone_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Zone could not be deleted'):
        delete_zone(db, room_id=room_id, zone_id=zone_id)
    db.commit()
    return {'ok': True}


@router.get('/rooms/{room_id}/requirements')
def requirements_list(room_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Requirements could not be loaded'):
        return list_room_requirements(db, room_id=room_id)


@router.get('/sites/{site_id}/tile-report')
def tile_report(site_id: int, db: Session = Depends(get_db)):
    return site_tile_report(db, site_id=site_id)


@router.get('/shortages')
def shortages_list(site_id: int | None = None, db: Session = Depends(get_db)):
    return list_shortage_requests(db, site_id=site_id)


@router.post('/shortages', status_code=201)
def shortages_create(
    payload: ShortageCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    with translate_service_errors('Shortage request could not be saved'):
        shortage = create_shortage_request(
            db,
            site_id=payload.site_id,
            room_id=payload.room_id,
            tile_id=payload.tile_id,
            requested_qty=payload.requested_qty,
            notifier=notifier,
            urgency=payload.urgency,
            note=payload.note,
            requested_by=payload.requested_by,
        )
    db.commit()
    return shortage_to_dict(shortage)


@router.patch('/shortages/{shortage_id}')
def shortages_update_status(shortage_id: int, payload: ShortageStatusUpdate, db: Session = Depends(get_db)):
    with translate_service_errors('Shortage status could not be updated'):
        shortage, result = update_shortage_status(
            db,
            shortage_id=shortage_id,
            status=payload.status,
            approved_by=payload.approved_by,
        )
    db.commit()
    return shortage_to_dict(shortage, extra={'fulfillment': result.as_dict()})


@router.get('/assignments')
def assignments_list(
    site_id: int | None = None,
    worker_id: int | None = None,
    db: Session = Depends(get_db),
):
    return list_assignments(db, site_id=site_id, worker_id=worker_id)


@router.post('/assignments', status_code=201)
def assignments_create(payload: AssignmentCreate, db: Session = Depends(get_db)):
    with translate_service_errors('Assignment could not be saved'):
        assignment = create_assignment(
            db,
            site_id=payload.site_id,
            worker_id=payload.worker_id,
            room_id=payload.room_id,
            surface_type=payload.surface_type,
            rate_per_sqft=payload.rate_per_sqft,
            contracted_sqft=payload.contracted_sqft,
        )
    db.commit()
    return assignment_to_dict(assignment)


@router.patch('/assignments/{assignment_id}')
def assignments_update(assignment_id: int, payload: AssignmentUpdate, db: Session = Depends(get_db)):
    with translate_service_errors('Assignment could not be updated'):
        assignment = update_assignment(db, assignment_id=assignment_id, changes=payload.changes())
    db.commit()
    return assignment_to_dict(assignment)


@router.get('/assignments/{assignment_id}/progress')
def progress_list(assignment_id: int, db: Session = Depends(get_db)):
    with translate_service_errors('Progress could not be loaded'):
        return list_progress(db, assignment_id=assignment_id)


@router.post('/assignments/{assignment_id}/progress', status_code=201)
def progress_create(assignment_id: int, payload: ProgressCreate, db: Session = Depends(get_db)):
    with translate_service_errors('Progress could not be recorded'):
        progress = record_progress(
            db,
            assignment_id=assignment_id,
            progress_date=payload.date,
            verified_sqft=payload.verified_sqft,
            note=payload.note,
            verified_by=payload.verified_by,
        )
    db.commit()
    assignment = db.get(TileMasonAssignment, progress.assignment_id)
    return {
        'id': progress.id,
        'assignment_id': progress.assignment_id,
        'date': progress.progress_date,
        'verified_sqft': progress.verified_sqft,
        'assignment': assignment_to_dict(assignment),
    }
