from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from .schema import ComputedPrescriptionModel, MeridianModel, PrescriptionModel

Usage = Literal["near", "far", "both"]

class DeviceModel(BaseModel):
    angle_min: float = 0.0
    angle_max: float = 180.0
    angle_step: float = Field(10.0, gt=0)
    default_starting_power: Optional[float] = None
    rough_alignment_meridians: int = 3
    angle_range: Literal[180, 360] = 180

class CreateSessionRequest(BaseModel):
    device: Optional[DeviceModel] = None
    rounding_policy: Optional[str] = None
    outlier_policy: Optional[str] = None
    state: Optional[ComputedPrescriptionModel] = Field(None, description="previously exported state to resume")

class SampleRequest(BaseModel):
    angle: float
    power: float

class MeridianRequest(BaseModel):
    angle: float

class SessionStatus(BaseModel):
    session_id: str
    current_bucket: Optional[float]
    working_meridian: Optional[float]
    current_power: Optional[float]
    angles_tested: int
    required_to_complete: int
    rough_alignment: bool
    done: bool
    fails: int
    angle_spread: Optional[float] = None

class SampleResponse(BaseModel):
    accepted: bool
    status: SessionStatus

class AcceptanceQuery(BaseModel):
    current: Optional[PrescriptionModel] = None
    using_glasses: bool = False
    usage: Usage = "far"
    age: float = Field(ge=0)

class FitResponse(BaseModel):
    session_id: str
    fitted: Optional[PrescriptionModel]
    softened_cylinder: Optional[PrescriptionModel]
    rounded: Optional[PrescriptionModel]
    accepted: Optional[PrescriptionModel]
    fails: int
    outliers: List[MeridianModel] = Field(default_factory=list)
    debug: List[str] = Field(default_factory=list)

class BatchRequest(BaseModel):
    meridians: List[MeridianModel]
    fails: int = Field(0, ge=0)
    step: Literal[0.25, 0.125, 0.0625] = 0.25
    remove_outliers: bool = True
    rounding_policy: Optional[str] = None
    outlier_policy: Optional[str] = None

class BatchResponse(BaseModel):
    fitted: PrescriptionModel
    no_outliers: PrescriptionModel
    softened_cylinder: Optional[PrescriptionModel]
    rounded: Optional[PrescriptionModel]
    quality_of_fit: float
    outliers: List[MeridianModel] = Field(default_factory=list)
    details: List[str] = Field(default_factory=list)

class AcceptanceRequest(AcceptanceQuery):
    new: PrescriptionModel

class AddPowerResponse(BaseModel):
    age: float
    reading_distance_m: Optional[float]
    add_by_age: float
    add_for_distance: Optional[float]
