"""Credential parsing and cross-field validation for sign-in."""
import re
from typing import Iterable, Optional

from email_validator import EmailNotValidError, validate_email

from services.shared import Identity, ValidationError


class IdentityValidator:
    """
    Validates the institutional email, personal email, matric number and
    full name a student signs in with.

    The institutional email encodes the admission year and department
    (``2203sen001@alhikmah.edu.ng``) and the matric number must carry the
    same year and department (``22/03sen001``).
    """

    def __init__(
        self,
        domain: str,
        enrollment_years: Iterable[str],
        department_codes: Iterable[str],
    ):
        self.domain = domain.lower()
        self.enrollment_years = [y.lower() for y in enrollment_years]
        self.department_codes = [d.lower() for d in department_codes]

        years = "|".join(re.escape(y) for y in self.enrollment_years)
        departments = "|".join(re.escape(d) for d in self.department_codes)
        self._email_pattern = re.compile(
            rf"^(?P<year>{years})(?P<dept>{departments})(?P<serial>\d{{3}})@{re.escape(self.domain)}$"
        )
        self._matric_pattern = re.compile(
            rf"^(?P<year>{years})/(?P<dept>{departments})(?P<serial>\d{{3}})$"
        )

    @classmethod
    def from_settings(cls, settings) -> 'IdentityValidator':
        return cls(
            domain=settings.INSTITUTION_DOMAIN,
            enrollment_years=settings.ENROLLMENT_YEARS,
            department_codes=settings.DEPARTMENT_CODES,
        )

    def validate(
        self,
        institutional_email: Optional[str],
        personal_email: Optional[str],
        matric_number: Optional[str],
        full_name: Optional[str],
    ) -> Identity:
        """
        Validate and normalize sign-in credentials.

        Args:
            institutional_email: Enrollment address
            personal_email: Student's personal address
            matric_number: Registration number
            full_name: First and last name

        Returns:
            Identity: Normalized identity

        Raises:
            ValidationError: Naming the first failing field
        """
        institutional = _required("institutional_email", institutional_email).lower()
        personal = _required("personal_email", personal_email).lower()
        matric = _required("matric_number", matric_number).lower()
        name = _required("full_name", full_name)

        email_match = self._email_pattern.match(institutional)
        if not email_match:
            raise ValidationError(
                "institutional_email",
                f"Invalid institutional email format. Must be like 2203sen001@{self.domain}",
            )

        try:
            personal = validate_email(personal, check_deliverability=False).normalized.lower()
        except EmailNotValidError as e:
            raise ValidationError("personal_email", f"Invalid personal email format: {e}")

        if personal == institutional:
            raise ValidationError(
                "personal_email",
                "Personal email must be different from the institutional email",
            )

        name_parts = [part for part in name.split() if len(part) > 1]
        if len(name_parts) < 2:
            raise ValidationError("full_name", "Please enter your complete first and last name")

        matric_match = self._matric_pattern.match(matric)
        if not matric_match:
            raise ValidationError("matric_number", "Invalid matric number format")

        if matric_match.group("year") != email_match.group("year"):
            raise ValidationError(
                "matric_number", "Year in email and matric number do not match"
            )
        if matric_match.group("dept") != email_match.group("dept"):
            raise ValidationError(
                "matric_number", "Department in email and matric number do not match"
            )

        return Identity(
            institutional_email=institutional,
            personal_email=personal,
            matric_number=matric,
            full_name=" ".join(name.split()),
            enrollment_year=email_match.group("year"),
            department=email_match.group("dept"),
        )


def _required(field: str, value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise ValidationError(field, f"{field} is required")
    return value.strip()
