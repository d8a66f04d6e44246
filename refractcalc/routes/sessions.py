"""
Per-eye test session API Routes
"""

import logging
import math
from typing import List, Optional

from fastapi import APIRouter, HTTPException

from refractcalc.models.api import (
    AcceptanceQuery, CreateSessionRequest, FitResponse, MeridianRequest, SampleRequest,
    SampleResponse, SessionStatus,
)
from refractcalc.models.lens import EyeglassUsage, InvalidMeasurementError
from refractcalc.models.schema import ComputedPrescriptionModel, MeridianModel, PrescriptionModel
from refractcalc.services.acquisition import DeviceCapabilities, SingleEyeBuilder
from refractcalc.config import settings
from refractcalc.storage import SESSIONS, SessionNotFound

log = logging.getLogger(__name__)

router = APIRouter()


def _get(session_id: str) -> SingleEyeBuilder:
    try:
        return SESSIONS.get(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")


def _finite(value: float) -> Optional[float]:
    return None if value is None or math.isnan(value) else value


def _status(builder: SingleEyeBuilder) -> SessionStatus:
    return SessionStatus(
        session_id=builder.session_id,
        current_bucket=builder.current_bucket,
        working_meridian=_finite(builder.working_meridian),
        current_power=_finite(builder.current_power),
        angles_tested=builder.prescription.num_angles_tested,
        required_to_complete=builder.number_of_meridians_required_to_complete(),
        rough_alignment=builder.is_doing_rough_alignment_first(),
        done=builder.is_test_done(),
        fails=builder.prescription.fails,
        angle_spread=_finite(builder.sensor_angle_spread),
    )


def _fit_response(builder: SingleEyeBuilder, debug: List[str]) -> FitResponse:
    cp = builder.prescription
    with cp.lock:
        outliers = [MeridianModel.from_domain(m) for m in cp.all_results() if m.is_outlier]
        return FitResponse(
            session_id=builder.session_id,
            fitted=PrescriptionModel.from_domain(cp.fitted),
            softened_cylinder=PrescriptionModel.from_domain(cp.softened_cylinder),
            rounded=PrescriptionModel.from_domain(cp.rounded),
            accepted=PrescriptionModel.from_domain(cp.accepted),
            fails=cp.fails,
            outliers=outliers,
            debug=debug,
        )


@router.post("/", response_model=SessionStatus, status_code=201)
def create_session(request: CreateSessionRequest) -> SessionStatus:
    """Start a new single eye test."""
    device = None
    if request.device is not None:
        params = request.device.model_dump()
        if params["default_starting_power"] is None:
            params["default_starting_power"] = settings.default_starting_power
        if params["angle_max"] <= params["angle_min"]:
            raise HTTPException(status_code=400, detail="angle_max must be greater than angle_min")
        device = DeviceCapabilities(**params)

    builder = SESSIONS.create(device, request.rounding_policy, request.outlier_policy, request.state)
    return _status(builder)


@router.get("/{session_id}", response_model=SessionStatus)
def get_session(session_id: str) -> SessionStatus:
    return _status(_get(session_id))


@router.delete("/{session_id}", status_code=204)
def delete_session(session_id: str):
    try:
        SESSIONS.delete(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")


@router.post("/{session_id}/samples", response_model=SampleResponse)
def add_sample(session_id: str, sample: SampleRequest) -> SampleResponse:
    """Feed one (angle, power) reading."""
    builder = _get(session_id)
    try:
        accepted = builder.add_result(sample.angle, sample.power)
    except InvalidMeasurementError as e:
        log.warning(f"Rejected sample: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=400, detail=str(e))
    return SampleResponse(accepted=accepted, status=_status(builder))


@router.post("/{session_id}/meridian", response_model=SessionStatus)
def set_working_meridian(session_id: str, request: MeridianRequest) -> SessionStatus:
    builder = _get(session_id)
    try:
        builder.set_working_meridian(request.angle)
    except InvalidMeasurementError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _status(builder)


@router.post("/{session_id}/sensor", response_model=SessionStatus)
def add_sensor_angle(session_id: str, request: MeridianRequest) -> SessionStatus:
    """Feed a raw angle sensor reading; the working meridian follows once it settles."""
    builder = _get(session_id)
    try:
        builder.add_sensor_angle(request.angle)
    except InvalidMeasurementError as e:
        log.warning(f"Rejected sensor angle: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=400, detail=str(e))
    return _status(builder)


@router.post("/{session_id}/fails", response_model=SessionStatus)
def add_fail(session_id: str) -> SessionStatus:
    """Record an operator misalignment."""
    builder = _get(session_id)
    builder.add_fail()
    return _status(builder)


@router.post("/{session_id}/save", response_model=SessionStatus)
def save_current_result(session_id: str) -> SessionStatus:
    builder = _get(session_id)
    builder.save_current_result()
    return _status(builder)


@router.post("/{session_id}/clear", response_model=SessionStatus)
def clear_captured_data(session_id: str) -> SessionStatus:
    builder = _get(session_id)
    builder.clear_captured_data()
    return _status(builder)


@router.post("/{session_id}/fit", response_model=FitResponse)
def fit_and_round(session_id: str) -> FitResponse:
    """Fit, remove outliers, soften and round the readings so far."""
    builder = _get(session_id)
    debug: List[str] = []
    builder.update_fit_and_round(debug)
    return _fit_response(builder, debug)


@router.post("/{session_id}/acceptance", response_model=FitResponse)
def fit_and_accept(session_id: str, query: AcceptanceQuery) -> FitResponse:
    builder = _get(session_id)
    current = query.current.to_domain() if query.current is not None else None
    builder.update_fit_and_acceptance(current, query.using_glasses, EyeglassUsage(query.usage), query.age)
    return _fit_response(builder, [])


@router.get("/{session_id}/state", response_model=ComputedPrescriptionModel)
def export_state(session_id: str) -> ComputedPrescriptionModel:
    """Everything needed to resume the test later."""
    return ComputedPrescriptionModel.from_domain(_get(session_id).prescription)
