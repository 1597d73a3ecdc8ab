"""Patient lookups."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.core.exceptions import NotFoundException
from clinic_scheduler.models.patients import patients
from clinic_scheduler.models.users import users
from clinic_scheduler.schemas.notifications import Participant


class PatientService:
    """Service for patient operations."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_patient(self, patient_id: UUID) -> dict:
        """
        Get a patient together with the linked user's name.

        Raises:
            NotFoundException: If the patient does not exist
        """
        query = (
            select(patients, users.c.full_name, users.c.email)
            .join(users, patients.c.user_id == users.c.id)
            .where(patients.c.id == patient_id)
        )
        result = await self.db.execute(query)
        patient = result.mappings().first()

        if not patient:
            raise NotFoundException(
                f"Patient not found with ID: {patient_id}", patient_id=str(patient_id)
            )

        return dict(patient)

    async def get_participant(self, patient_id: UUID) -> Participant:
        """Get the patient as a notification recipient."""
        patient = await self.get_patient(patient_id)
        return Participant(user_id=patient["user_id"], full_name=patient["full_name"])
