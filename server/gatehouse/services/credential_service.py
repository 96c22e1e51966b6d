"""QR credentials binding a booking to its resident and amenity."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import jwt
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import AuthorizationError, InvalidCredentialError, ProblemDetailsException
from ..core.observability import get_logger, metrics_collector
from ..core.security import AuthContext, Role, parse_uuid, require_role
from ..models.attendance import VerificationMethod
from ..models.booking import Booking, BookingStatus
from .booking_service import BookingService

logger = get_logger(__name__)

AMENITY_BOOKING = "amenity-booking"


@dataclass(frozen=True)
class IssuedCredential:
    booking_id: UUID
    credential_type: str
    token: str


@dataclass(frozen=True)
class ConsumedCredential:
    booking_id: UUID
    resident_name: str
    amenity_name: str
    status: BookingStatus


class CredentialService:
    """
    Issues and consumes booking credentials.

    A credential carries no server-side state. Consuming it is the booking's
    check-in transition, so a second scan fails once the booking has left
    confirmed/approved.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.bookings = BookingService(db)

    @staticmethod
    def encode(booking: Booking, credential_type: str = AMENITY_BOOKING) -> str:
        claims = {
            "typ": credential_type,
            "bookingId": str(booking.id),
            "amenityId": str(booking.amenity_id),
            "residentId": str(booking.resident_id),
            "tenantId": str(booking.tenant_id),
            "iat": datetime.now(timezone.utc),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(
            claims,
            settings.credential_token_secret,
            algorithm=settings.token_algorithm,
            headers={"kid": credential_type},
        )

    @staticmethod
    def decode(token: str, expected_type: str = AMENITY_BOOKING) -> dict[str, Any]:
        """
        Verify a credential's signature and type.

        Raises:
            InvalidCredentialError: Malformed, tampered or wrong-typed token
        """
        try:
            header = jwt.get_unverified_header(token)
            claims = jwt.decode(
                token,
                settings.credential_token_secret,
                algorithms=[settings.token_algorithm],
                options={"require": ["typ", "bookingId"]},
            )
        except PyJWTError as e:
            raise InvalidCredentialError(f"Credential could not be verified: {e}") from e

        if header.get("kid") != expected_type or claims.get("typ") != expected_type:
            raise InvalidCredentialError(
                f"Credential of type '{claims.get('typ')}' is not valid at an '{expected_type}' scanner"
            )

        return claims

    async def issue(self, ctx: AuthContext, booking_id: UUID) -> IssuedCredential:
        """
        Issue a credential for a booking owned by the calling resident.

        Issuance never changes the booking and may be repeated.
        """
        require_role(ctx, Role.RESIDENT)
        booking = await self.bookings.load_for_tenant(ctx, booking_id)
        if booking.resident_id != ctx.subject_id:
            raise AuthorizationError(detail=f"Booking {booking.id} belongs to another resident")

        token = self.encode(booking)
        logger.info("Booking credential issued", booking_id=str(booking.id), **ctx.log_fields())
        return IssuedCredential(booking_id=booking.id, credential_type=AMENITY_BOOKING, token=token)

    async def consume(
        self, ctx: AuthContext, token: str, expected_type: str = AMENITY_BOOKING
    ) -> ConsumedCredential:
        """
        Verify a scanned credential and check the booking in.

        Args:
            ctx: Device or operator caller context
            token: Scanned credential
            expected_type: Credential type this scanner accepts

        Returns:
            Booking id with resident and amenity names for the scanner display

        Raises:
            InvalidCredentialError: Malformed, wrong type, or inconsistent with the booking
            AuthorizationError: Credential issued for another society
            NotFoundError: Booking no longer exists
            IllegalStateTransitionError: Booking not in confirmed/approved
            ResourceUnavailableError: Amenity not operational
            OutOfWindowError: Booking is not for today
        """
        return await self._scan(ctx, token, expected_type, BookingStatus.CHECKED_IN)

    async def check_out(
        self, ctx: AuthContext, token: str, expected_type: str = AMENITY_BOOKING
    ) -> ConsumedCredential:
        """
        Verify a credential scanned on the way out and check the booking out.

        Raises the same credential errors as ``consume``; a booking that is
        not checked in yields IllegalStateTransitionError.
        """
        return await self._scan(ctx, token, expected_type, BookingStatus.CHECKED_OUT)

    async def _scan(
        self, ctx: AuthContext, token: str, expected_type: str, target: BookingStatus
    ) -> ConsumedCredential:
        require_role(ctx, Role.DEVICE, Role.OPERATOR)
        try:
            booking = await self._credential_booking(ctx, token, expected_type)
            booking = await self.bookings.apply_transition(
                ctx, booking, target, method=VerificationMethod.QR_CODE
            )
        except ProblemDetailsException as e:
            metrics_collector.record_credential_scan(e.code.lower())
            raise

        metrics_collector.record_credential_scan(target.value.replace("-", "_"))
        return ConsumedCredential(
            booking_id=booking.id,
            resident_name=booking.resident.name,
            amenity_name=booking.amenity.name,
            status=BookingStatus(booking.status),
        )

    async def _credential_booking(self, ctx: AuthContext, token: str, expected_type: str) -> Booking:
        claims = self.decode(token, expected_type)

        booking_id = parse_uuid(claims.get("bookingId"))
        if booking_id is None:
            raise InvalidCredentialError("Credential does not reference a booking")

        tenant_id = parse_uuid(claims.get("tenantId"))
        if tenant_id is None:
            raise InvalidCredentialError("Credential is missing its society scope")
        if tenant_id != ctx.tenant_id:
            logger.warning(
                "Credential from another society scanned",
                credential_tenant_id=str(tenant_id),
                booking_id=str(booking_id),
                **ctx.log_fields(),
            )
            raise AuthorizationError(detail="Credential was issued for another society")

        booking = await self.bookings.load_for_tenant(ctx, booking_id)

        if (
            claims.get("amenityId") != str(booking.amenity_id)
            or claims.get("residentId") != str(booking.resident_id)
        ):
            logger.warning("Credential claims do not match booking", booking_id=str(booking.id), **ctx.log_fields())
            raise InvalidCredentialError("Credential does not match the booking it references")

        return booking
