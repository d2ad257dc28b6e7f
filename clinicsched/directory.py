from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from clinicsched.domain import Dentist, FetchError, Patient

logger = logging.getLogger(__name__)


class DirectorySource(Protocol):
    async def list_patients(self) -> Sequence[Patient]: ...

    async def list_dentists(self, role: str = "dentist") -> Sequence[Dentist]: ...


@dataclass
class ClinicDirectory:
    """Patients and dentists selectable in the booking form."""

    patients: list[Patient] = field(default_factory=list)
    dentists: list[Dentist] = field(default_factory=list)

    @classmethod
    async def load(cls, source: DirectorySource) -> ClinicDirectory:
        try:
            patients = list(await source.list_patients())
            dentists = list(await source.list_dentists(role="dentist"))
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Failed to load clinic directory ({type(e).__name__}: {e})") from e

        logger.info("Directory loaded: patients=%d dentists=%d", len(patients), len(dentists))
        return cls(patients=patients, dentists=dentists)

    def patient_name(self, patient_id: str) -> str:
        patient = next((p for p in self.patients if p.id == patient_id), None)
        return patient.full_name if patient else "Unknown Patient"

    def dentist_name(self, dentist_id: str) -> str:
        dentist = next((d for d in self.dentists if d.id == dentist_id), None)
        return f"Dr. {dentist.full_name}" if dentist else "Unknown Dentist"
