"""
Unit tests for email verification codes.

These tests cover:
- Issuing codes (overwrite, delivery failure)
- Verifying codes (expiry, mismatch, single use)
- Resend cooldown and daily cap
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest

from iep_api.core.exceptions import EmailDeliveryError, ServiceUnavailableError
from iep_api.modules.pre_registrations.errors import (
    CodeMismatchError,
    RateLimitError,
    RecordNotFoundError,
    RecordUnavailableError,
    RegistrationExpiredError,
    TransitionError,
    VerificationCodeExpiredError,
)
from iep_api.modules.pre_registrations.models import RegistrationStatus
from iep_api.modules.pre_registrations.verification import (
    VerificationCodeService,
    generate_verification_code,
)


@pytest.fixture
def service(store, email_sender, mock_redis, clock):
    return VerificationCodeService(store, email_sender, redis=mock_redis, clock=clock)


class TestGenerateVerificationCode:
    """Tests for generate_verification_code."""

    def test_six_digits(self):
        """Codes are exactly 6 numeric characters."""
        for _ in range(50):
            code = generate_verification_code()
            assert len(code) == 6
            assert code.isdigit()


class TestIssue:
    """Tests for VerificationCodeService.issue."""

    @pytest.mark.asyncio
    async def test_issue_stores_and_sends_code(self, service, store, staged_record, email_sender, now):
        """Code is stored with a 15 minute expiry and emailed."""
        result = await service.issue(staged_record.id)

        stored = store.get(staged_record.id)
        assert stored.codigo_verificacion is not None
        assert stored.codigo_verificacion_expira == now + timedelta(minutes=15)
        assert result.expires_at == stored.codigo_verificacion_expira
        assert result.email == "juan.perez@gmail.com"

        email_sender.send.assert_awaited_once()
        message = email_sender.send.call_args[0][0]
        assert message.to == "juan.perez@gmail.com"
        assert stored.codigo_verificacion in message.body

    @pytest.mark.asyncio
    async def test_issue_overwrites_previous_code(self, service, store, staged_record):
        """Only the latest code is active."""
        with patch(
            "iep_api.modules.pre_registrations.verification.generate_verification_code",
            side_effect=["111111", "222222"],
        ):
            await service.issue(staged_record.id)
            await service.issue(staged_record.id)

        assert store.get(staged_record.id).codigo_verificacion == "222222"
        with pytest.raises(CodeMismatchError):
            await service.verify(staged_record.id, "111111")
        assert await service.verify(staged_record.id, "222222") is True

    @pytest.mark.asyncio
    async def test_issue_without_email(self, service, record):
        """A record with no staged email cannot receive a code."""
        with pytest.raises(TransitionError):
            await service.issue(record.id)

    @pytest.mark.asyncio
    async def test_delivery_failure_clears_code(self, service, store, staged_record, email_sender):
        """If the email fails the new code is cleared and the error surfaces."""
        email_sender.send.side_effect = EmailDeliveryError()

        with pytest.raises(EmailDeliveryError):
            await service.issue(staged_record.id)

        stored = store.get(staged_record.id)
        assert stored.codigo_verificacion is None
        assert stored.codigo_verificacion_expira is None

    @pytest.mark.asyncio
    async def test_unknown_record(self, service):
        """Unknown ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            await service.issue("missing")


class TestVerify:
    """Tests for VerificationCodeService.verify."""

    @pytest.mark.asyncio
    async def test_correct_code_is_consumed(self, service, store, staged_record):
        """Success clears the code; status is left to the caller."""
        await service.issue(staged_record.id)
        code = store.get(staged_record.id).codigo_verificacion

        assert await service.verify(staged_record.id, code) is True

        stored = store.get(staged_record.id)
        assert stored.codigo_verificacion is None
        assert stored.codigo_verificacion_expira is None
        assert stored.estado_registro == RegistrationStatus.PENDIENTE

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, service, store, staged_record):
        """Repeating a consumed code fails with RecordNotFoundError."""
        await service.issue(staged_record.id)
        code = store.get(staged_record.id).codigo_verificacion
        await service.verify(staged_record.id, code)

        with pytest.raises(RecordNotFoundError):
            await service.verify(staged_record.id, code)

    @pytest.mark.asyncio
    async def test_wrong_code(self, service, store, staged_record):
        """A different code raises CodeMismatchError and keeps the active code."""
        await service.issue(staged_record.id)
        code = store.get(staged_record.id).codigo_verificacion
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(CodeMismatchError):
            await service.verify(staged_record.id, wrong)

        assert store.get(staged_record.id).codigo_verificacion == code

    @pytest.mark.asyncio
    async def test_expired_code(self, service, store, staged_record, clock):
        """After 15 minutes the code is expired."""
        await service.issue(staged_record.id)
        code = store.get(staged_record.id).codigo_verificacion

        clock.advance(minutes=15, seconds=1)
        with pytest.raises(VerificationCodeExpiredError):
            await service.verify(staged_record.id, code)

    @pytest.mark.asyncio
    async def test_code_valid_at_exact_expiry(self, service, store, staged_record, clock):
        """now == expiry is still within the window."""
        await service.issue(staged_record.id)
        code = store.get(staged_record.id).codigo_verificacion

        clock.advance(minutes=15)
        assert await service.verify(staged_record.id, code) is True

    @pytest.mark.asyncio
    async def test_no_active_code(self, service, staged_record):
        """Verifying without an issued code raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            await service.verify(staged_record.id, "123456")

    @pytest.mark.asyncio
    async def test_concurrent_verify_consumes_once(self, service, store, staged_record):
        """Two concurrent verifications of the same code: exactly one wins."""
        await service.issue(staged_record.id)
        code = store.get(staged_record.id).codigo_verificacion

        results = await asyncio.gather(
            service.verify(staged_record.id, code),
            service.verify(staged_record.id, code),
            return_exceptions=True,
        )

        assert results.count(True) == 1
        failures = [r for r in results if r is not True]
        assert len(failures) == 1
        assert isinstance(failures[0], (CodeMismatchError, RecordNotFoundError))


class TestResend:
    """Tests for VerificationCodeService.resend."""

    @pytest.mark.asyncio
    async def test_first_resend_succeeds(self, service, store, awaiting_record, email_sender, now):
        """Bookkeeping is updated and a new code is sent."""
        result = await service.resend(awaiting_record.id)

        stored = store.get(awaiting_record.id)
        assert stored.ultimo_reenvio == now
        assert stored.intentos_reenvio == 1
        assert stored.codigo_verificacion is not None
        assert result.expires_at == now + timedelta(minutes=15)
        email_sender.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_second_resend_within_cooldown(self, service, awaiting_record, clock):
        """A second resend inside 60 seconds is rate limited."""
        await service.resend(awaiting_record.id)
        clock.advance(seconds=20)

        with pytest.raises(RateLimitError) as exc_info:
            await service.resend(awaiting_record.id)

        assert exc_info.value.retry_after_seconds == 40
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_resend_after_cooldown(self, service, store, awaiting_record, clock):
        """After 61 seconds a resend succeeds."""
        await service.resend(awaiting_record.id)
        clock.advance(seconds=61)

        await service.resend(awaiting_record.id)
        assert store.get(awaiting_record.id).intentos_reenvio == 2

    @pytest.mark.asyncio
    async def test_concurrent_resends_only_one_passes(self, service, store, awaiting_record):
        """Near-simultaneous resends cannot both bypass the cooldown."""
        results = await asyncio.gather(
            service.resend(awaiting_record.id),
            service.resend(awaiting_record.id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], RateLimitError)
        assert store.get(awaiting_record.id).intentos_reenvio == 1

    @pytest.mark.asyncio
    async def test_daily_cap_reached(self, service, awaiting_record, mock_redis):
        """Exceeding the daily cap raises RateLimitError with the counter TTL."""
        mock_redis.incr.return_value = 6
        mock_redis.ttl.return_value = 5000

        with pytest.raises(RateLimitError) as exc_info:
            await service.resend(awaiting_record.id)

        assert exc_info.value.retry_after_seconds == 5000

    @pytest.mark.asyncio
    async def test_daily_counter_gets_ttl_on_first_use(self, service, awaiting_record, mock_redis):
        """The counter expires after 24 hours."""
        await service.resend(awaiting_record.id)

        mock_redis.incr.assert_awaited_once_with(f"resend_code:daily:{awaiting_record.id}")
        mock_redis.expire.assert_awaited_once_with(
            f"resend_code:daily:{awaiting_record.id}", 24 * 60 * 60
        )

    @pytest.mark.asyncio
    async def test_fails_closed_without_redis(self, store, email_sender, clock, awaiting_record):
        """With a cap configured and no Redis, resend is refused."""
        service = VerificationCodeService(store, email_sender, redis=None, clock=clock)

        with pytest.raises(ServiceUnavailableError):
            await service.resend(awaiting_record.id)
        email_sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_cap_disables_redis(self, store, email_sender, clock, awaiting_record):
        """resend_daily_limit=0 needs no Redis."""
        service = VerificationCodeService(
            store, email_sender, redis=None, clock=clock, resend_daily_limit=0
        )

        await service.resend(awaiting_record.id)
        email_sender.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_error_fails_closed(self, service, awaiting_record, mock_redis):
        """Redis errors while counting are reported as unavailable."""
        mock_redis.incr.side_effect = ConnectionError("redis down")

        with pytest.raises(ServiceUnavailableError):
            await service.resend(awaiting_record.id)

    @pytest.mark.asyncio
    async def test_resend_for_active_record(self, service, store, make_record):
        """Only pendiente records can get new codes."""
        active = store.add(
            make_record(estado_registro=RegistrationStatus.ACTIVO, email="a@b.pe")
        )
        with pytest.raises(RecordUnavailableError):
            await service.resend(active.id)

    @pytest.mark.asyncio
    async def test_resend_before_profile_staged(
        self, service, store, record, mock_redis, email_sender
    ):
        """Without a staged email nothing is counted or written."""
        with pytest.raises(TransitionError):
            await service.resend(record.id)

        stored = store.get(record.id)
        assert stored.intentos_reenvio == 0
        assert stored.ultimo_reenvio is None
        mock_redis.incr.assert_not_awaited()
        email_sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resend_without_issued_code(self, service, store, staged_record, mock_redis):
        """A staged profile whose code was never issued cannot be resent."""
        with pytest.raises(TransitionError):
            await service.resend(staged_record.id)

        assert store.get(staged_record.id).intentos_reenvio == 0
        mock_redis.incr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resend_after_deadline(self, service, store, awaiting_record, clock, mock_redis):
        """An expired registration gets no new code and no bookkeeping."""
        clock.advance(days=31)

        with pytest.raises(RegistrationExpiredError) as exc_info:
            await service.resend(awaiting_record.id)

        assert exc_info.value.fecha_vencimiento == awaiting_record.fecha_vencimiento
        stored = store.get(awaiting_record.id)
        assert stored.intentos_reenvio == 0
        assert stored.ultimo_reenvio is None
        mock_redis.incr.assert_not_awaited()
