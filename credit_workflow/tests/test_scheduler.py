from datetime import timedelta

from ..models import SubmitRequestParams
from ..models.enums import (
    ApprovalLevel,
    EventType,
    HoldStatus,
    RequestStatus,
    RequestType,
    TeamRole,
)


def submit(workflow, world, credits, requester_id=None, team_id=None):
    return workflow.submit_request(
        SubmitRequestParams(
            company_id=world.company_id,
            team_id=team_id or world.team_id,
            requester_id=requester_id or world.requester_id,
            request_type=RequestType.EXPERT_DEEPDIVE,
            title="Expert deep dive",
            estimated_credits=credits,
        )
    )


def test_escalation_moves_request_to_admin(workflow, scheduler, world) -> None:
    result = submit(workflow, world, 1000)
    now = result.request.expires_at - timedelta(hours=3)

    outcome = scheduler.process_escalations(now)

    assert outcome.success is True
    assert outcome.escalated_ids == [result.request.id]
    detail = workflow.get_request_with_events(result.request.id)
    request = detail.request
    assert request.status == RequestStatus.PENDING
    assert request.approval_level == ApprovalLevel.ADMIN
    assert request.current_approver_id == world.admin_id
    assert request.expires_at == now + timedelta(hours=24)
    assert request.escalation_count == 1
    escalated = detail.events[-1]
    assert escalated.event_type == EventType.ESCALATED
    assert escalated.performed_by_system is True
    assert escalated.metadata["previousApprover"] == str(world.approver_id)
    assert escalated.metadata["newApprover"] == str(world.admin_id)

    again = scheduler.process_escalations(now + timedelta(hours=1))
    assert again.escalated_count == 0
    assert len(workflow.get_request_with_events(result.request.id).events) == 2


def test_escalation_ignores_requests_outside_window(workflow, scheduler, world) -> None:
    result = submit(workflow, world, 1000)

    outcome = scheduler.process_escalations(result.request.expires_at - timedelta(hours=10))

    assert outcome.escalated_count == 0


def test_escalation_without_admin_is_skipped(workflow, scheduler, seed, world) -> None:
    team_id = seed.team(world.company_id, "No admins")
    requester_id = seed.member(team_id)
    seed.member(team_id, TeamRole.APPROVER)
    stuck = submit(workflow, world, 1000, requester_id=requester_id, team_id=team_id)
    movable = submit(workflow, world, 1000)
    now = stuck.request.expires_at - timedelta(hours=2)

    outcome = scheduler.process_escalations(now)

    assert outcome.escalated_ids == [movable.request.id]
    request = workflow.get_request_with_events(stuck.request.id).request
    assert request.approval_level == ApprovalLevel.APPROVER
    assert request.escalation_count == 0


def test_admin_rule_sets_escalated_deadline(workflow, scheduler, seed, world) -> None:
    seed.rule(world.company_id, 500, 1999, ApprovalLevel.APPROVER, escalation_hours=48, priority=0)
    seed.rule(world.company_id, 0, None, ApprovalLevel.ADMIN, escalation_hours=8, priority=10)
    result = submit(workflow, world, 1000)
    assert result.approval_level == ApprovalLevel.APPROVER
    now = result.request.expires_at - timedelta(hours=1)

    scheduler.process_escalations(now)

    request = workflow.get_request_with_events(result.request.id).request
    assert request.expires_at == now + timedelta(hours=8)


def test_expiration_releases_hold(workflow, scheduler, ledger, world, inspect) -> None:
    result = submit(workflow, world, 1000)
    assert ledger.get_balance(world.account_id).available_credits == 11000
    now = result.request.expires_at + timedelta(minutes=1)

    outcome = scheduler.process_expirations(now)

    assert outcome.expired_ids == [result.request.id]
    detail = workflow.get_request_with_events(result.request.id)
    assert detail.request.status == RequestStatus.EXPIRED
    assert [event.event_type for event in detail.events] == [
        EventType.SUBMITTED,
        EventType.EXPIRED,
    ]
    assert detail.events[-1].performed_by_system is True
    assert inspect.holds(result.request.id)[0].status == HoldStatus.RELEASED
    assert ledger.get_balance(world.account_id).available_credits == 12000

    assert scheduler.process_expirations(now).expired_count == 0


def test_expiration_leaves_decided_requests_alone(workflow, scheduler, world) -> None:
    approved = submit(workflow, world, 1000)
    pending = submit(workflow, world, 1200)
    workflow.approve_request(approved.request.id, world.approver_id)

    outcome = scheduler.process_expirations(approved.request.expires_at + timedelta(hours=1))

    assert outcome.expired_ids == [pending.request.id]
    request = workflow.get_request_with_events(approved.request.id).request
    assert request.status == RequestStatus.APPROVED


def test_requests_without_deadline_never_expire(workflow, scheduler, seed, world) -> None:
    seed.rule(world.company_id, 0, None, ApprovalLevel.APPROVER, escalation_hours=None)
    result = submit(workflow, world, 1000)
    assert result.request.expires_at is None

    outcome = scheduler.process_expirations(result.request.created_at + timedelta(days=365))

    assert outcome.expired_count == 0
