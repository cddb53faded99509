from medportal.models.user import User, UserProfile, UserRole, UserStatus, Gender
from medportal.models.patient import Patient, PatientDocument
from medportal.models.doctor import Doctor
from medportal.models.appointment import Appointment, AppointmentStatus
from medportal.models.prescription import Prescription, PrescriptionStatus
from medportal.models.pharmacy import Medication, Inventory
from medportal.models.lab_test import LabTest, LabTestStatus
from medportal.models.notification import Notification, NotificationType
from medportal.models.blog import Blog, BlogStatus
from medportal.models.medical_record import MedicalRecord

__all__ = [
    "User",
    "UserProfile",
    "UserRole",
    "UserStatus",
    "Gender",
    "Patient",
    "PatientDocument",
    "Doctor",
    "Appointment",
    "AppointmentStatus",
    "Prescription",
    "PrescriptionStatus",
    "Medication",
    "Inventory",
    "LabTest",
    "LabTestStatus",
    "Notification",
    "NotificationType",
    "Blog",
    "BlogStatus",
    "MedicalRecord",
]
