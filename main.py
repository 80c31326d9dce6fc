import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import services
from database import Store, get_store
from errors import ServiceError
from schemas import (
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentStatusUpdate,
    AppointmentUpdate,
    DoctorCreate,
    DoctorUpdate,
    PatientCreate,
    PatientUpdate,
    PrescriptionCreate,
    PrescriptionUpdate,
    ReviewCreate,
    ReviewUpdate,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "development")

app = FastAPI(title="HealthPlus API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error bodies are always {"error": message}

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    missing = [str(e["loc"][-1]) for e in exc.errors() if e.get("type") == "missing"]
    if missing:
        message = "Missing required fields: " + ", ".join(missing)
    else:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first["loc"] if p != "body")
        message = f"Invalid {field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s crashed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/")
def root(store: Store = Depends(get_store)):
    return store.load()


@app.get("/debug")
def debug(store: Store = Depends(get_store)):
    timestamp = services.isoformat(datetime.now(timezone.utc))
    try:
        doc = store.load()
    except ServiceError as e:
        return JSONResponse(status_code=500, content={
            "status": "error",
            "message": "Server encountered an error",
            "error": e.message,
            "timestamp": timestamp,
        })
    return {
        "status": "ok",
        "message": "Server is running correctly",
        "timestamp": timestamp,
        "environment": APP_ENV,
        "database": {"exists": True, **services.store_counts(doc)},
    }


# Schema exposure for API clients
@app.get("/schema")
def get_schema():
    return {
        "doctor": DoctorCreate.model_json_schema(by_alias=True),
        "patient": PatientCreate.model_json_schema(by_alias=True),
        "appointment": AppointmentCreate.model_json_schema(by_alias=True),
        "prescription": PrescriptionCreate.model_json_schema(by_alias=True),
        "review": ReviewCreate.model_json_schema(by_alias=True),
    }


# Appointment counters for dashboards
@app.get("/metrics")
def get_metrics(doctor_id: Optional[str] = Query(None, alias="doctorId"), store: Store = Depends(get_store)):
    return services.appointment_metrics(store, doctor_id)


# Doctors

@app.get("/doctors")
def list_doctors(
    specialty: Optional[str] = None,
    email: Optional[str] = None,
    store: Store = Depends(get_store),
):
    return services.list_entities(store, "doctors", specialty=specialty, email=email)


@app.post("/doctors", status_code=201)
def create_doctor(payload: DoctorCreate, store: Store = Depends(get_store)):
    return services.create_profile(store, "doctors", payload.to_record())


@app.get("/doctors/{doctor_id}")
def get_doctor(doctor_id: str, store: Store = Depends(get_store)):
    return services.get_entity(store, "doctors", doctor_id)


@app.patch("/doctors/{doctor_id}")
def update_doctor(doctor_id: str, payload: DoctorUpdate, store: Store = Depends(get_store)):
    return services.update_profile(store, "doctors", doctor_id, payload.to_record(partial=True))


# Patients

@app.get("/patients")
def list_patients(
    email: Optional[str] = None,
    search: Optional[str] = None,
    store: Store = Depends(get_store),
):
    return services.search_patients(store, search, email=email)


@app.post("/patients", status_code=201)
def create_patient(payload: PatientCreate, store: Store = Depends(get_store)):
    return services.create_profile(store, "patients", payload.to_record())


@app.get("/patients/{patient_id}")
def get_patient(patient_id: str, store: Store = Depends(get_store)):
    return services.get_entity(store, "patients", patient_id)


@app.patch("/patients/{patient_id}")
def update_patient(patient_id: str, payload: PatientUpdate, store: Store = Depends(get_store)):
    return services.update_profile(store, "patients", patient_id, payload.to_record(partial=True))


@app.get("/patients/{patient_id}/medical-history")
def get_medical_history(patient_id: str, store: Store = Depends(get_store)):
    return services.medical_history(store, patient_id)


# Appointments

@app.get("/appointments")
def list_appointments(
    doctor_id: Optional[str] = Query(None, alias="doctorId"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    status: Optional[str] = None,
    store: Store = Depends(get_store),
):
    return services.list_entities(store, "appointments", doctorId=doctor_id, patientId=patient_id, status=status)


@app.post("/appointments", status_code=201)
def create_appointment(payload: AppointmentCreate, store: Store = Depends(get_store)):
    return services.create_appointment(store, payload.to_record())


@app.get("/appointments/{appointment_id}")
def get_appointment(appointment_id: str, store: Store = Depends(get_store)):
    return services.get_entity(store, "appointments", appointment_id)


@app.patch("/appointments/{appointment_id}")
def update_appointment(appointment_id: str, payload: AppointmentUpdate, store: Store = Depends(get_store)):
    return services.update_entity(store, "appointments", appointment_id, payload.to_record(partial=True))


@app.delete("/appointments/{appointment_id}")
def delete_appointment(appointment_id: str, store: Store = Depends(get_store)):
    return services.delete_entity(store, "appointments", appointment_id)


@app.post("/appointments/{appointment_id}/reschedule")
def reschedule_appointment(appointment_id: str, payload: AppointmentReschedule, store: Store = Depends(get_store)):
    slot = payload.to_record()
    return services.reschedule_appointment(store, appointment_id, slot["date"], slot["time"])


@app.patch("/appointments/{appointment_id}/status")
def update_appointment_status(appointment_id: str, payload: AppointmentStatusUpdate, store: Store = Depends(get_store)):
    return services.update_appointment_status(store, appointment_id, payload.status)


# Prescriptions

@app.get("/prescriptions")
def list_prescriptions(
    doctor_id: Optional[str] = Query(None, alias="doctorId"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    appointment_id: Optional[str] = Query(None, alias="appointmentId"),
    store: Store = Depends(get_store),
):
    return services.list_entities(
        store, "prescriptions", doctorId=doctor_id, patientId=patient_id, appointmentId=appointment_id
    )


@app.post("/prescriptions", status_code=201)
def create_prescription(payload: PrescriptionCreate, store: Store = Depends(get_store)):
    return services.create_prescription(store, payload.to_record())


@app.get("/prescriptions/{prescription_id}")
def get_prescription(prescription_id: str, store: Store = Depends(get_store)):
    return services.get_entity(store, "prescriptions", prescription_id)


@app.patch("/prescriptions/{prescription_id}")
def update_prescription(prescription_id: str, payload: PrescriptionUpdate, store: Store = Depends(get_store)):
    return services.update_entity(store, "prescriptions", prescription_id, payload.to_record(partial=True))


@app.delete("/prescriptions/{prescription_id}")
def delete_prescription(prescription_id: str, store: Store = Depends(get_store)):
    return services.delete_entity(store, "prescriptions", prescription_id)


# Plain-text rendering of a prescription
@app.get("/prescriptions/{prescription_id}/preview")
def prescription_preview(prescription_id: str, store: Store = Depends(get_store)):
    return services.render_prescription(services.get_entity(store, "prescriptions", prescription_id))


# Reviews

@app.get("/reviews")
def list_reviews(
    doctor_id: Optional[str] = Query(None, alias="doctorId"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    appointment_id: Optional[str] = Query(None, alias="appointmentId"),
    store: Store = Depends(get_store),
):
    return services.list_entities(
        store, "reviews", doctorId=doctor_id, patientId=patient_id, appointmentId=appointment_id
    )


@app.post("/reviews", status_code=201)
def create_review(payload: ReviewCreate, store: Store = Depends(get_store)):
    return services.create_review(store, payload.to_record())


@app.get("/reviews/{review_id}")
def get_review(review_id: str, store: Store = Depends(get_store)):
    return services.get_entity(store, "reviews", review_id)


@app.patch("/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, store: Store = Depends(get_store)):
    return services.update_review(store, review_id, payload.to_record(partial=True))


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, store: Store = Depends(get_store)):
    return services.delete_review(store, review_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
