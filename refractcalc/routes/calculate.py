"""
Stateless prescription calculation API Routes
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, HTTPException, Query

from refractcalc.models.api import AcceptanceRequest, AddPowerResponse, BatchRequest, BatchResponse
from refractcalc.models.lens import EyeglassUsage, InvalidMeasurementError
from refractcalc.models.schema import MeridianModel, PrescriptionModel
from refractcalc.config import settings
from refractcalc.services.acceptance import accept
from refractcalc.services.add_power import suggested_add_by_age, want_to_read_at
from refractcalc.services.fitting import curve_fitting
from refractcalc.services.outliers import clear_outliers, remove_outliers
from refractcalc.services.quality import quality_of_fit
from refractcalc.services.rounding import round_prescription, soften_cylinder
from refractcalc.services.rounding_policy import get_available_policies, get_outlier_policy, get_rounding_policy

log = logging.getLogger(__name__)

router = APIRouter()

AXIS_STEP_FOR = {0.25: 5, 0.125: 3, 0.0625: 1}


@router.post("/prescription", response_model=BatchResponse)
def calculate_prescription(request: BatchRequest) -> BatchResponse:
    """
    Fit, remove outliers, soften and round a batch of meridian readings.

    Readings flagged as outliers in the request are ignored for the first fit
    and re-evaluated by the outlier search.
    """
    if not request.meridians:
        raise HTTPException(status_code=400, detail="At least one meridian is required")

    try:
        meridians = [m.to_domain() for m in request.meridians]
    except InvalidMeasurementError as e:
        raise HTTPException(status_code=400, detail=str(e))

    rounding_policy = get_rounding_policy(request.rounding_policy or settings.rounding_policy)
    outlier_policy = get_outlier_policy(request.outlier_policy or settings.outlier_policy)

    fitted = curve_fitting(meridians)
    if request.remove_outliers:
        no_outliers = remove_outliers(meridians, request.fails, fitted, None, outlier_policy)
    else:
        clear_outliers(meridians)
        no_outliers = curve_fitting(meridians)

    details = []
    softened = soften_cylinder(no_outliers, meridians, request.fails, rounding_policy)
    rounded = round_prescription(no_outliers, meridians, request.fails, details,
                                 request.step, AXIS_STEP_FOR[request.step], rounding_policy)

    log.info(f"Batch of {len(meridians)} readings: fitted {no_outliers}, rounded {rounded}")

    return BatchResponse(
        fitted=PrescriptionModel.from_domain(fitted),
        no_outliers=PrescriptionModel.from_domain(no_outliers),
        softened_cylinder=PrescriptionModel.from_domain(softened),
        rounded=PrescriptionModel.from_domain(rounded),
        quality_of_fit=quality_of_fit(meridians, request.fails, no_outliers),
        outliers=[MeridianModel.from_domain(m) for m in meridians if m.is_outlier],
        details=details,
    )


@router.post("/acceptance", response_model=PrescriptionModel)
def calculate_acceptance(request: AcceptanceRequest) -> PrescriptionModel:
    """Adjust a new prescription to what the patient is expected to accept."""
    current = request.current.to_domain() if request.current is not None else None
    accepted = accept(current, request.using_glasses, request.new.to_domain(),
                      EyeglassUsage(request.usage), request.age)
    return PrescriptionModel.from_domain(accepted)


@router.get("/add-power", response_model=AddPowerResponse)
def calculate_add_power(age: float = Query(..., ge=0, le=150),
                        reading_distance_m: Optional[float] = Query(None, gt=0)) -> AddPowerResponse:
    """Reading add by age, and for a preferred reading distance when given."""
    return AddPowerResponse(
        age=age,
        reading_distance_m=reading_distance_m,
        add_by_age=suggested_add_by_age(age),
        add_for_distance=want_to_read_at(age, reading_distance_m) if reading_distance_m else None,
    )


@router.get("/policies")
def list_policies() -> Dict[str, Dict[str, str]]:
    return get_available_policies()
