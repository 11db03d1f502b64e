"""End-to-end tests for the workflow orchestrator."""

from pathlib import Path

import pytest

import procureflow.persistence as persistence
from procureflow import (
    EngineConfig,
    InMemoryAuditLog,
    StaticRoleResolver,
    WorkflowOrchestrator,
    build_orchestrator,
    load_config,
)
from procureflow.audit import (
    WORKFLOW_APPROVED,
    WORKFLOW_CANCELLED,
    WORKFLOW_INITIATED,
    WORKFLOW_RECALLED,
    WORKFLOW_REJECTED,
    WORKFLOW_RESUBMITTED,
)
from procureflow.engine import InstanceStateMachine
from procureflow.errors import (
    DefinitionNotFound,
    DuplicatePendingInstance,
    InvalidDecision,
    InvalidRequest,
    InvalidRoutingValue,
    LevelAdvanced,
    NotAuthorizedForLevel,
    RecallNotAllowed,
    StaleVersion,
)
from procureflow.persistence import InMemoryInstanceRepository, SQLiteInstanceRepository
from procureflow.registry import load_definitions

WORKFLOWS = Path(__file__).parent.parent / "fixtures" / "workflows.yaml"

ROLES = {
    "buyer": [],
    "pm1": ["procurement_manager"],
    "pm2": ["procurement_manager"],
    "cc1": ["cost_center"],
    "gm1": ["general_manager"],
}


class InterleavingRepository(InMemoryInstanceRepository):
    """Runs ``interleave`` right before the next save, simulating a racing writer."""

    def __init__(self) -> None:
        super().__init__()
        self.interleave = None

    async def save_instance(self, instance, expected_version):
        hook, self.interleave = self.interleave, None
        if hook is not None:
            await hook()
        await super().save_instance(instance, expected_version)


def _orchestrator(repo=None, attempts=1):
    repo = repo or InMemoryInstanceRepository()
    audit = InMemoryAuditLog()
    orchestrator = WorkflowOrchestrator(
        load_definitions(WORKFLOWS),
        repo,
        StaticRoleResolver(ROLES),
        audit_log=audit,
        engine_config=EngineConfig(stale_retry_attempts=attempts, retry_base_delay=0),
    )
    return orchestrator, audit


@pytest.mark.asyncio
async def test_full_approval_is_audited():
    orchestrator, audit = _orchestrator()
    instance = await orchestrator.start(
        "Purchase_Order", 42, 75000, submitted_by="buyer", document_number="PO-42"
    )
    assert instance.document_id == "42"
    assert instance.workflow_name == "standard_po"
    assert instance.active_level_numbers == [1, 2, 3]

    for user in ("pm1", "cc1", "gm1"):
        assert [i.id for i in await orchestrator.pending_for(user)] == [instance.id]
        instance = await orchestrator.approve(instance.id, user, comment=f"{user} ok")

    assert instance.status == "approved"
    assert [e.event for e in audit.for_instance(instance.id)] == [
        WORKFLOW_INITIATED,
        WORKFLOW_APPROVED,
        WORKFLOW_APPROVED,
        WORKFLOW_APPROVED,
    ]
    last = audit.entries[-1]
    assert last.user_id == "gm1"
    assert last.details == {"level": 3, "comments": "gm1 ok", "final_status": "approved"}

    stats = await orchestrator.statistics("purchase_order")
    assert stats["approved"]["count"] == 1


@pytest.mark.asyncio
async def test_start_validation():
    orchestrator, _ = _orchestrator()
    with pytest.raises(InvalidRequest):
        await orchestrator.start("", "po-1", 100)
    with pytest.raises(InvalidRequest):
        await orchestrator.start("purchase_order", " ", 100)
    with pytest.raises(InvalidRoutingValue):
        await orchestrator.start("purchase_order", "po-1", -100)
    with pytest.raises(DefinitionNotFound):
        await orchestrator.start("invoice", "inv-1", 100)
    with pytest.raises(DefinitionNotFound):
        await orchestrator.start("purchase_order", "po-1", 100, workflow_name="joint_quotation")

    await orchestrator.start("purchase_order", "po-1", 100)
    with pytest.raises(DuplicatePendingInstance):
        await orchestrator.start("purchase_order", "po-1", 100)


@pytest.mark.asyncio
async def test_decide_normalizes_and_validates_decision():
    orchestrator, audit = _orchestrator()
    instance = await orchestrator.start("purchase_order", "po-1", 100)
    with pytest.raises(InvalidDecision):
        await orchestrator.decide(instance.id, "pm1", "escalate")
    with pytest.raises(NotAuthorizedForLevel):
        await orchestrator.approve(instance.id, "cc1")

    rejected = await orchestrator.decide(instance.id, "pm1", " Reject ", comment="price")
    assert rejected.status == "rejected"
    assert audit.entries[-1].event == WORKFLOW_REJECTED


@pytest.mark.asyncio
async def test_explicit_roles_skip_the_resolver():
    orchestrator, _ = _orchestrator()
    instance = await orchestrator.start("purchase_order", "po-1", 100)
    approved = await orchestrator.approve(
        instance.id, "visitor", actor_roles=["procurement_manager"]
    )
    assert approved.status == "approved"
    assert approved.decisions[0].actor_id == "visitor"


@pytest.mark.asyncio
async def test_stale_write_is_retried_on_same_level():
    repo = InterleavingRepository()
    orchestrator, _ = _orchestrator(repo)
    instance = await orchestrator.start("material_quotation", "mq-1", 250000)
    racer = InstanceStateMachine(repo)

    async def cost_center_approves_first():
        await racer.decide(instance.id, "cc1", {"cost_center"}, "approve")

    repo.interleave = cost_center_approves_first
    result = await orchestrator.approve(instance.id, "pm1")

    assert result.version == 3
    assert result.current_level.level_number == 2
    assert result.credited_roles(1) == {"procurement_manager", "cost_center"}


@pytest.mark.asyncio
async def test_retry_never_approves_a_later_level():
    repo = InterleavingRepository()
    orchestrator, audit = _orchestrator(repo)
    instance = await orchestrator.start("purchase_order", "po-1", 15000)
    racer = InstanceStateMachine(repo)

    async def other_manager_approves_first():
        await racer.decide(instance.id, "pm2", {"procurement_manager"}, "approve")

    repo.interleave = other_manager_approves_first
    with pytest.raises(LevelAdvanced) as exc_info:
        await orchestrator.decide(
            instance.id, "boss", "approve", actor_roles=["procurement_manager", "cost_center"]
        )
    assert "already left level 1" in exc_info.value.message

    stored = await orchestrator.get_instance(instance.id)
    assert [d.actor_id for d in stored.decisions] == ["pm2"]
    assert stored.current_level.level_number == 2
    assert [e.event for e in audit.entries] == [WORKFLOW_INITIATED]


@pytest.mark.asyncio
async def test_stale_version_surfaces_without_retries():
    repo = InterleavingRepository()
    orchestrator, _ = _orchestrator(repo, attempts=0)
    instance = await orchestrator.start("material_quotation", "mq-1", 1000)
    racer = InstanceStateMachine(repo)

    async def racing_write():
        await racer.decide(instance.id, "cc1", {"cost_center"}, "approve")

    repo.interleave = racing_write
    with pytest.raises(StaleVersion):
        await orchestrator.approve(instance.id, "pm1")


@pytest.mark.asyncio
async def test_outdated_caller_version():
    strict, _ = _orchestrator(attempts=0)
    instance = await strict.start("purchase_order", "po-1", 15000)
    await strict.approve(instance.id, "pm1", expected_version=1)
    with pytest.raises(StaleVersion):
        await strict.approve(instance.id, "cc1", expected_version=1)

    # retries never replace a version the caller supplied
    retrying, audit = _orchestrator(strict.state_machine.repository, attempts=3)
    with pytest.raises(StaleVersion) as exc_info:
        await retrying.decide(
            instance.id,
            "boss",
            "approve",
            expected_version=1,
            actor_roles=["procurement_manager", "cost_center"],
        )
    assert exc_info.value.expected_version == 1

    stored = await retrying.get_instance(instance.id)
    assert stored.status == "pending"
    assert stored.version == 2
    assert stored.current_level.level_number == 2
    assert [d.actor_id for d in stored.decisions] == ["pm1"]
    assert audit.entries == []

    approved = await retrying.approve(instance.id, "cc1", expected_version=2)
    assert approved.status == "approved"
    assert [d.actor_id for d in approved.decisions] == ["pm1", "cc1"]


@pytest.mark.asyncio
async def test_resubmit_uses_latest_definition_version():
    orchestrator, audit = _orchestrator()
    instance = await orchestrator.start("purchase_order", "po-1", 5000, submitted_by="buyer")
    await orchestrator.reject(instance.id, "pm1", comment="wrong supplier")

    po = orchestrator.definitions.get_by_name("standard_po")
    po.levels[2].is_mandatory = True
    orchestrator.definitions.save(po)

    new = await orchestrator.resubmit(instance.id, "buyer")
    assert new.active_level_numbers == [1, 3]
    assert new.definition_version == 2
    assert new.supersedes == instance.id
    assert audit.entries[-1].event == WORKFLOW_RESUBMITTED
    assert audit.entries[-1].details["supersedes"] == instance.id

    found = await orchestrator.find_by_document("PURCHASE_ORDER", "po-1")
    assert found.id == new.id


@pytest.mark.asyncio
async def test_resubmit_falls_back_to_default_when_workflow_removed():
    orchestrator, _ = _orchestrator()
    orchestrator.definitions.save(
        orchestrator.definitions.get_by_name("standard_po").model_copy(
            update={"workflow_name": "legacy_po", "is_default": False}
        )
    )
    instance = await orchestrator.start(
        "purchase_order", "po-1", 5000, workflow_name="legacy_po"
    )
    await orchestrator.reject(instance.id, "pm1")
    orchestrator.definitions.remove("legacy_po")

    new = await orchestrator.resubmit(instance.id, "buyer", new_routing_value=20000)
    assert new.workflow_name == "standard_po"
    assert new.active_level_numbers == [1, 2]


@pytest.mark.asyncio
async def test_cancel_and_recall():
    orchestrator, audit = _orchestrator()
    first = await orchestrator.start("purchase_order", "po-1", 5000, submitted_by="buyer")

    with pytest.raises(RecallNotAllowed):
        await orchestrator.recall(first.id, "pm1")
    recalled = await orchestrator.recall(first.id, "buyer")
    assert recalled.status == "cancelled"
    assert recalled.cancel_reason == "recalled by submitter"
    assert audit.entries[-1].event == WORKFLOW_RECALLED

    second = await orchestrator.start("purchase_order", "po-2", 15000, submitted_by="buyer")
    await orchestrator.approve(second.id, "pm1")
    with pytest.raises(RecallNotAllowed):
        await orchestrator.recall(second.id, "buyer")
    cancelled = await orchestrator.cancel(second.id, "buyer", reason="order withdrawn")
    assert cancelled.status == "cancelled"
    assert audit.entries[-1].event == WORKFLOW_CANCELLED
    assert audit.entries[-1].details == {"reason": "order withdrawn"}


@pytest.mark.asyncio
async def test_recall_respects_workflow_setting():
    orchestrator, _ = _orchestrator()
    quote = await orchestrator.start("material_quotation", "mq-1", 100, submitted_by="buyer")
    with pytest.raises(RecallNotAllowed):
        await orchestrator.recall(quote.id, "buyer")


@pytest.mark.asyncio
async def test_build_orchestrator_from_config(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.delenv("PROCUREFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("PROCUREFLOW_DEFINITIONS", raising=False)
    (tmp_path / "workflows.yaml").write_text(WORKFLOWS.read_text())
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite://{tmp_path / 'approvals.db'}
definitions_path: workflows.yaml
roles:
  pm1: [procurement_manager]
engine:
  retry_base_delay: 0
"""
    )

    orchestrator = build_orchestrator(load_config(str(config_path)))
    instance = await orchestrator.start("purchase_order", "po-1", 5000)
    approved = await orchestrator.approve(instance.id, "pm1")
    assert approved.status == "approved"

    reopened = SQLiteInstanceRepository(tmp_path / "approvals.db")
    assert (await reopened.get_instance(instance.id)).status == "approved"
