"""
Database Schemas

HealthPlus domain models.
Each Pydantic model describes a request body for one collection of the JSON
store. Fields are snake_case in Python and camelCase on the wire.
"""

from datetime import date as Date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AppointmentStatus = Literal["pending", "confirmed", "cancelled", "completed", "approved"]
ConsultationType = Literal["clinic", "video", "call"]

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self, partial: bool = False) -> dict:
        """Dump to the stored (camelCase, JSON-ready) shape."""
        if partial:
            # an explicit null leaves the stored value alone
            return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True, mode="json")
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ProfileModel(CamelModel):
    # Profiles keep whatever extra fields the client sends
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# Core domain schemas

class DoctorCreate(ProfileModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, description="Doctor's full name")
    email: str = Field(..., min_length=3, description="Login email")
    password: Optional[str] = Field(None, description="Stored as given")
    phone: Optional[str] = Field(None, description="Contact number")
    specialty: Optional[str] = Field(None, description="Primary specialty")
    qualifications: Optional[str] = None
    experience: Optional[str] = None
    clinic_address: Optional[str] = None
    about: Optional[str] = Field(None, description="Short bio")
    image: Optional[str] = Field(None, description="Profile image URL")
    consultation_fee: Optional[float] = Field(None, ge=0, description="Clinic visit fee")
    video_consultation_fee: Optional[float] = Field(None, ge=0)
    call_consultation_fee: Optional[float] = Field(None, ge=0)
    availability: Optional[Dict[str, List[str]]] = Field(None, description="Weekdays per consultation mode")
    time_slots: Optional[List[str]] = None
    consultation_type: Optional[List[ConsultationType]] = None
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)


class DoctorUpdate(ProfileModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    specialty: Optional[str] = None
    qualifications: Optional[str] = None
    experience: Optional[str] = None
    clinic_address: Optional[str] = None
    about: Optional[str] = None
    image: Optional[str] = None
    consultation_fee: Optional[float] = Field(None, ge=0)
    video_consultation_fee: Optional[float] = Field(None, ge=0)
    call_consultation_fee: Optional[float] = Field(None, ge=0)
    availability: Optional[Dict[str, List[str]]] = None
    time_slots: Optional[List[str]] = None
    consultation_type: Optional[List[ConsultationType]] = None


class PatientCreate(ProfileModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: Optional[str] = None
    phone: Optional[str] = None


class PatientUpdate(ProfileModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None


class AppointmentCreate(CamelModel):
    id: Optional[str] = None
    doctor_id: str
    patient_id: str
    date: Date = Field(..., description="Appointment day YYYY-MM-DD")
    time: str = Field(..., pattern=TIME_PATTERN, description="Slot HH:mm")
    status: AppointmentStatus = "pending"
    consultation_type: ConsultationType = "clinic"
    doctor_name: Optional[str] = None
    patient_name: Optional[str] = None
    specialty: Optional[str] = None
    notes: Optional[str] = None


class AppointmentUpdate(CamelModel):
    date: Optional[Date] = None
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    status: Optional[AppointmentStatus] = None
    consultation_type: Optional[ConsultationType] = None
    notes: Optional[str] = None


class AppointmentReschedule(CamelModel):
    date: Date
    time: str = Field(..., pattern=TIME_PATTERN)


class AppointmentStatusUpdate(CamelModel):
    status: AppointmentStatus


class Medicine(CamelModel):
    name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1, description="e.g. 1 tablet twice daily")
    duration: str = Field(..., min_length=1, description="e.g. 7 days")


class PrescriptionCreate(CamelModel):
    id: Optional[str] = None
    doctor_id: str
    patient_id: str
    appointment_id: Optional[str] = None
    doctor_name: Optional[str] = None
    patient_name: Optional[str] = None
    date: Optional[Date] = Field(None, description="Defaults to the day it is written")
    medicines: List[Medicine] = Field(..., min_length=1)
    notes: str = ""


class PrescriptionUpdate(CamelModel):
    date: Optional[Date] = None
    medicines: Optional[List[Medicine]] = Field(None, min_length=1)
    notes: Optional[str] = None


class ReviewCreate(CamelModel):
    appointment_id: str
    doctor_id: str
    patient_id: str
    rating: int = Field(..., ge=1, le=5)
    review_text: str = ""


class ReviewUpdate(CamelModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    review_text: Optional[str] = None
