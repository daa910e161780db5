"""Tests for the reconciliation module."""

import json
import pytest
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from enrollment_payments.credentials import CredentialResolver
from enrollment_payments.database import (
    CredentialRepository,
    SubmissionRepository,
    PaymentStatus,
)
from enrollment_payments.reconciliation import (
    ReconciliationService,
    SweepRequest,
    clamp_batch_size,
    clamp_age_minutes,
)
from enrollment_payments.reconciliation import cli

RECONCILE_URL = "/api/payments/reconcile"


class TestSweepBounds:
    """Tests for clamping the sweep parameters."""

    @pytest.mark.parametrize("value,expected", [
        (None, 25),
        ("", 25),
        ("abc", 25),
        ("10", 10),
        (10, 10),
        ("9999", 50),
        ("0", 1),
        ("-5", 1),
        ("50", 50),
    ])
    def test_clamp_batch_size(self, value, expected):
        assert clamp_batch_size(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (None, 10),
        ("x", 10),
        ("30", 30),
        ("0", 1),
        ("-1", 1),
    ])
    def test_clamp_age_minutes(self, value, expected):
        assert clamp_age_minutes(value) == expected

    def test_from_params(self):
        request = SweepRequest.from_params(max_items="9999", age_minutes="5")
        assert request.max_items == 50
        assert request.age_minutes == 5


class TestReconciliationService:
    """Tests for the sweep service."""

    async def test_candidates_pending_and_stale_oldest_first(self, db_session, create_submission):
        newest = await create_submission(age_minutes=15)
        oldest = await create_submission(age_minutes=60)
        await create_submission(age_minutes=2)
        await create_submission(age_minutes=90, payment_status=PaymentStatus.PAID.value)

        service = ReconciliationService(db_session)
        candidates = await service.list_candidates(SweepRequest(age_minutes=10))

        assert [c.id for c in candidates] == [oldest.id, newest.id]

    async def test_candidates_bounded_by_batch_size(self, db_session, create_submission):
        for _ in range(3):
            await create_submission()

        service = ReconciliationService(db_session)
        candidates = await service.list_candidates(SweepRequest(max_items=2))

        assert len(candidates) == 2

    async def test_sweep_updates_paid_submission(
        self, db_session, mercadopago, mock_access_token, create_submission
    ):
        submission = await create_submission(metadata={"form": "enrollment"})
        mercadopago.add_payment(
            10,
            status="rejected",
            external_reference=submission.id,
        )
        mercadopago.add_payment(
            11,
            external_reference=submission.id,
            amount=200.0,
            date_approved="2024-05-01T09:30:00.000-03:00",
        )

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        result = await service.run_sweep(SweepRequest())

        assert (result.processed, result.updated, result.unchanged, result.failed) == (1, 1, 0, 0)
        assert result.results[0].to_dict() == {"submission_id": submission.id, "status": "PAID"}

        stored = await SubmissionRepository(db_session).get_by_id(submission.id)
        assert stored.payment_status == PaymentStatus.PAID.value
        assert stored.payment_date == datetime(2024, 5, 1, 12, 30)
        assert stored.payment_amount == Decimal("200.00")
        assert stored.metadata_ == {
            "form": "enrollment",
            "mp_payment_id": 11,
            "mp_status": "approved",
            "mp_status_detail": "accredited",
            "mp_payment_method": "pix",
            "mp_payment_type": "bank_transfer",
        }

    async def test_sweep_without_provider_payment_is_unchanged(
        self, db_session, mercadopago, mock_access_token, create_submission
    ):
        submission = await create_submission()

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        result = await service.run_sweep(SweepRequest())

        assert (result.updated, result.unchanged) == (0, 1)
        assert result.results[0].status == "PENDING"
        stored = await SubmissionRepository(db_session).get_by_id(submission.id)
        assert stored.metadata_ == {}

    async def test_canceled_clears_payment_date(
        self, db_session, mercadopago, mock_access_token, create_submission
    ):
        submission = await create_submission()
        mercadopago.add_payment(5, status="cancelled", external_reference=submission.id)

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        await service.run_sweep(SweepRequest())

        stored = await SubmissionRepository(db_session).get_by_id(submission.id)
        assert stored.payment_status == PaymentStatus.CANCELED.value
        assert stored.payment_date is None

    async def test_sweep_is_idempotent(
        self, db_session, mercadopago, mock_access_token, create_submission
    ):
        """A second sweep with no new provider data changes nothing."""
        in_process = await create_submission(age_minutes=40)
        paid = await create_submission(age_minutes=30)
        mercadopago.add_payment(1, status="in_process", external_reference=in_process.id)
        mercadopago.add_payment(2, external_reference=paid.id)

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        first = await service.run_sweep(SweepRequest())
        state_after_first = {
            s.id: (s.payment_status, s.payment_date, s.payment_amount, dict(s.metadata_))
            for s in [
                await SubmissionRepository(db_session).get_by_id(in_process.id),
                await SubmissionRepository(db_session).get_by_id(paid.id),
            ]
        }

        second = await ReconciliationService(
            db_session, client_factory=mercadopago.client_factory
        ).run_sweep(SweepRequest())
        state_after_second = {
            s.id: (s.payment_status, s.payment_date, s.payment_amount, dict(s.metadata_))
            for s in [
                await SubmissionRepository(db_session).get_by_id(in_process.id),
                await SubmissionRepository(db_session).get_by_id(paid.id),
            ]
        }

        assert (first.updated, first.unchanged) == (2, 0)
        assert second.processed == 1
        assert (second.updated, second.unchanged, second.failed) == (0, 1, 0)
        assert state_after_first == state_after_second

    async def test_missing_credentials_isolated(
        self, db_session, mercadopago, create_submission
    ):
        """One submission without credentials does not stop the batch."""
        await CredentialRepository(db_session).upsert_tenant("tenant_ok", access_token="tenant-ok-token")
        await db_session.commit()
        missing = await create_submission(tenant_id="tenant_missing", age_minutes=60)
        valid = await create_submission(tenant_id="tenant_ok", age_minutes=30)
        mercadopago.add_payment(1, external_reference=valid.id)

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        result = await service.run_sweep(SweepRequest())

        assert result.processed == 2
        assert (result.updated, result.failed) == (1, 1)
        by_id = {r.submission_id: r for r in result.results}
        assert by_id[missing.id].error == "mp_credentials_missing"
        assert by_id[missing.id].status is None
        assert by_id[valid.id].status == "PAID"
        assert mercadopago.tokens == ["tenant-ok-token"]

    async def test_upstream_failure_isolated(
        self, db_session, mercadopago, mock_access_token, create_submission
    ):
        failing = await create_submission(age_minutes=60)
        valid = await create_submission(age_minutes=30)
        mercadopago.failing_references.add(failing.id)
        mercadopago.add_payment(1, external_reference=valid.id)

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        result = await service.run_sweep(SweepRequest())

        assert (result.processed, result.updated, result.failed) == (2, 1, 1)
        failed = [r for r in result.results if r.error]
        assert failed[0].submission_id == failing.id
        assert "500" in failed[0].error

    async def test_persistence_failure_isolated(
        self, db_session, mercadopago, mock_access_token, create_submission, monkeypatch
    ):
        first = await create_submission(age_minutes=60)
        second = await create_submission(age_minutes=30)
        mercadopago.add_payment(1, external_reference=first.id)
        mercadopago.add_payment(2, external_reference=second.id)

        original = SubmissionRepository.apply_payment_update

        async def flaky_update(self, submission_id, **kwargs):
            if submission_id == first.id:
                raise SQLAlchemyError("disk I/O error")
            return await original(self, submission_id=submission_id, **kwargs)

        monkeypatch.setattr(SubmissionRepository, "apply_payment_update", flaky_update)

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        result = await service.run_sweep(SweepRequest())

        assert (result.processed, result.updated, result.failed) == (2, 1, 1)
        stored = await SubmissionRepository(db_session).get_by_id(second.id)
        assert stored.payment_status == PaymentStatus.PAID.value

    async def test_global_credential_resolved_once(
        self, db_session, mercadopago, create_submission, monkeypatch
    ):
        await CredentialRepository(db_session).upsert_global(access_token="global-token")
        await db_session.commit()
        for _ in range(3):
            await create_submission()

        calls = []
        original = CredentialRepository.get_global

        async def counting_get_global(self):
            calls.append(1)
            return await original(self)

        monkeypatch.setattr(CredentialRepository, "get_global", counting_get_global)

        service = ReconciliationService(db_session, client_factory=mercadopago.client_factory)
        result = await service.run_sweep(SweepRequest())

        assert result.processed == 3
        assert len(calls) == 1
        assert mercadopago.tokens == ["global-token"] * 3


class TestReconcileEndpoint:
    """Tests for the reconciliation trigger."""

    async def test_open_without_secret(self, api_client, mock_access_token, create_submission):
        await create_submission()

        response = await api_client.get(RECONCILE_URL)

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 1
        assert body["unchanged"] == 1
        assert "timestamp" in body

    async def test_secret_required(self, api_client, monkeypatch, mercadopago):
        monkeypatch.setenv("PAYMENTS_RECONCILE_TOKEN", "cron-secret")

        response = await api_client.get(RECONCILE_URL)
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}

        response = await api_client.get(RECONCILE_URL, headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401
        assert mercadopago.requests == []

    async def test_secret_accepted(self, api_client, monkeypatch):
        monkeypatch.setenv("PAYMENTS_RECONCILE_TOKEN", "cron-secret")

        response = await api_client.get(RECONCILE_URL, headers={"Authorization": "Bearer cron-secret"})

        assert response.status_code == 200
        assert response.json()["processed"] == 0

    async def test_batch_upper_bound(self, api_client, mock_access_token, create_submission):
        for _ in range(52):
            await create_submission()

        response = await api_client.get(RECONCILE_URL, params={"max": "9999"})

        assert response.json()["processed"] == 50

    async def test_batch_lower_bound(self, api_client, mock_access_token, create_submission):
        for _ in range(3):
            await create_submission()

        response = await api_client.get(RECONCILE_URL, params={"max": "0"})

        assert response.json()["processed"] == 1

    async def test_age_threshold(self, api_client, mock_access_token, create_submission):
        await create_submission(age_minutes=5)
        await create_submission(age_minutes=45)

        response = await api_client.get(RECONCILE_URL, params={"age_minutes": "30"})

        assert response.json()["processed"] == 1

    async def test_item_failures_reported_in_200(self, api_client, create_submission):
        submission = await create_submission()

        response = await api_client.get(RECONCILE_URL)

        assert response.status_code == 200
        body = response.json()
        assert body["failed"] == 1
        assert body["results"] == [{"submission_id": submission.id, "error": "mp_credentials_missing"}]

    async def test_listing_failure(self, api_client, monkeypatch):
        async def broken_list(self, cutoff, limit):
            raise SQLAlchemyError("relation submissions does not exist")

        monkeypatch.setattr(SubmissionRepository, "list_stale_pending", broken_list)

        response = await api_client.get(RECONCILE_URL)

        assert response.status_code == 500
        assert response.json()["error"] == "list_error"


class TestStatusEndpoint:
    """Tests for the single-submission status check."""

    async def test_status_synced(self, api_client, db_session, mercadopago, mock_access_token, create_submission):
        submission = await create_submission(age_minutes=1)
        mercadopago.add_payment(31, external_reference=submission.id)

        response = await api_client.get(f"/api/payments/status/{submission.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "PAID"
        assert body["mp"]["id"] == 31
        assert body["mp"]["status"] == "approved"
        stored = await SubmissionRepository(db_session).get_by_id(submission.id)
        assert stored.payment_status == PaymentStatus.PAID.value

    async def test_status_without_payment(self, api_client, mock_access_token, create_submission):
        submission = await create_submission()

        response = await api_client.get(f"/api/payments/status/{submission.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"
        assert response.json()["mp"] is None

    async def test_status_not_found(self, api_client, mock_access_token):
        response = await api_client.get("/api/payments/status/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "submission_not_found"}

    async def test_status_credentials_missing(self, api_client, create_submission):
        submission = await create_submission()

        response = await api_client.get(f"/api/payments/status/{submission.id}")

        assert response.status_code == 500
        assert response.json() == {"error": "mp_credentials_missing"}

    async def test_status_upstream_failure(self, api_client, mercadopago, mock_access_token, create_submission):
        submission = await create_submission()
        mercadopago.failing_references.add(submission.id)

        response = await api_client.get(f"/api/payments/status/{submission.id}")

        assert response.status_code == 502
        assert response.json()["error"] == "upstream_error"

    async def test_status_write_failure(
        self, api_client, mercadopago, mock_access_token, create_submission, monkeypatch
    ):
        submission = await create_submission()
        mercadopago.add_payment(32, external_reference=submission.id)

        async def broken_update(self, *args, **kwargs):
            raise SQLAlchemyError("submissions table locked")

        monkeypatch.setattr(SubmissionRepository, "apply_payment_update", broken_update)

        response = await api_client.get(f"/api/payments/status/{submission.id}")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "persistence_error"
        assert submission.id in body["detail"]


class TestCLI:
    """Tests for the command-line sweep."""

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_parser_defaults(self):
        args = cli.create_parser().parse_args(["reconcile"])
        assert args.max_items is None
        assert args.age_minutes is None
        assert args.output is None

    async def test_run_sweep_writes_output(self, tmp_path):
        output = tmp_path / "sweep.json"

        exit_code = await cli.run_sweep_async(
            max_items="5",
            output_file=str(output),
            database_url="sqlite+aiosqlite:///:memory:",
        )

        assert exit_code == 0
        assert json.loads(output.read_text())["processed"] == 0

    async def test_run_sweep_listing_failure(self, tmp_path, monkeypatch):
        async def broken_listing(self, cutoff, limit):
            raise SQLAlchemyError("submissions table unavailable")

        monkeypatch.setattr(SubmissionRepository, "list_stale_pending", broken_listing)
        output = tmp_path / "sweep.json"

        exit_code = await cli.run_sweep_async(
            output_file=str(output),
            database_url="sqlite+aiosqlite:///:memory:",
        )

        assert exit_code == 2
        assert not output.exists()
