from pydantic import BaseModel, Field
from typing import List, Optional

from refractcalc.models.lens import AstigmaticPrescription, MeasuredMeridian
from refractcalc.models.prescription import ComputedPrescription, to_key


class PrescriptionModel(BaseModel):
    sphere: float = Field(0.0, description="D")
    cylinder: float = Field(0.0, description="D, negative notation")
    axis: float = Field(0.0, description="degrees [0, 180)")
    add: float = Field(0.0, description="D, reading add")

    @classmethod
    def from_domain(cls, rx: Optional[AstigmaticPrescription]) -> Optional["PrescriptionModel"]:
        if rx is None:
            return None
        return cls(sphere=rx.sphere, cylinder=rx.cylinder, axis=rx.axis, add=rx.add)

    def to_domain(self) -> AstigmaticPrescription:
        return AstigmaticPrescription(self.sphere, self.cylinder, self.axis, self.add)


class MeridianModel(BaseModel):
    angle: float = Field(description="degrees")
    power: float = Field(description="D")
    is_outlier: bool = False

    @classmethod
    def from_domain(cls, m: MeasuredMeridian) -> "MeridianModel":
        return cls(angle=m.angle, power=m.power, is_outlier=m.is_outlier)

    def to_domain(self) -> MeasuredMeridian:
        return MeasuredMeridian(self.angle, self.power, self.is_outlier)


class BucketModel(BaseModel):
    angle: float = Field(description="bucket angle, 0.01° resolution")
    current: MeridianModel
    history: List[MeridianModel] = Field(default_factory=list, description="oldest first")


class ComputedPrescriptionModel(BaseModel):
    """Persisted state of one eye's test."""
    buckets: List[BucketModel] = Field(default_factory=list)
    raw_results: List[MeridianModel] = Field(default_factory=list)
    fails: int = 0
    fitted: Optional[PrescriptionModel] = None
    softened_cylinder: Optional[PrescriptionModel] = None
    rounded: Optional[PrescriptionModel] = None
    accepted: Optional[PrescriptionModel] = None

    @classmethod
    def from_domain(cls, cp: ComputedPrescription) -> "ComputedPrescriptionModel":
        with cp.lock:
            histories = cp.test_results.histories()
            buckets = [
                BucketModel(
                    angle=angle,
                    current=MeridianModel.from_domain(current),
                    history=[MeridianModel.from_domain(m) for m in histories.get(to_key(angle), [])],
                )
                for angle, current in cp.test_results.items()
            ]
            return cls(
                buckets=buckets,
                raw_results=[MeridianModel.from_domain(m) for m in cp.raw_results],
                fails=cp.fails,
                fitted=PrescriptionModel.from_domain(cp.fitted),
                softened_cylinder=PrescriptionModel.from_domain(cp.softened_cylinder),
                rounded=PrescriptionModel.from_domain(cp.rounded),
                accepted=PrescriptionModel.from_domain(cp.accepted),
            )

    def to_domain(self) -> ComputedPrescription:
        cp = ComputedPrescription()
        for bucket in self.buckets:
            key = to_key(bucket.angle)
            cp.test_results.restore(key, bucket.current.to_domain(),
                                    [m.to_domain() for m in bucket.history])
        cp.raw_results = [m.to_domain() for m in self.raw_results]
        cp.fails = self.fails
        cp.fitted = self.fitted.to_domain() if self.fitted else None
        cp.softened_cylinder = self.softened_cylinder.to_domain() if self.softened_cylinder else None
        cp.rounded = self.rounded.to_domain() if self.rounded else None
        cp.accepted = self.accepted.to_domain() if self.accepted else None
        return cp
