"""
Quest lifecycle: claim -> complete -> approve / reject, and the guarded status updates.
"""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import PermissionDenied

from apps.common.exceptions import Conflict, InvalidTransition, NotFound, SkillRequirementsNotMet
from apps.notifications.models import Notification, NotificationType
from apps.quests.lifecycle import assert_transition, can_transition, guarded_update
from apps.quests.models import CompletionStatus, Quest, QuestCompletion, QuestStatus

pytestmark = pytest.mark.django_db


class TestTransitionTable:
    def test_allowed_moves(self):
        assert can_transition(QuestStatus.AVAILABLE, QuestStatus.CLAIMED)
        assert can_transition(QuestStatus.COMPLETED, QuestStatus.COOLDOWN)
        assert can_transition(QuestStatus.REJECTED, QuestStatus.AVAILABLE)

    def test_forbidden_moves(self):
        assert not can_transition(QuestStatus.AVAILABLE, QuestStatus.COMPLETED)
        assert not can_transition(QuestStatus.CLAIMED, QuestStatus.APPROVED)
        assert not can_transition(QuestStatus.APPROVED, QuestStatus.AVAILABLE)

    def test_assert_transition_raises(self):
        with pytest.raises(InvalidTransition) as exc:
            assert_transition(QuestStatus.CLAIMED, QuestStatus.AVAILABLE)
        assert exc.value.current == "CLAIMED"
        assert exc.value.requested == "AVAILABLE"


class TestGuardedUpdate:
    """The conditional UPDATE is what makes concurrent requests safe."""

    def test_stale_expected_status_is_a_conflict(self, make_quest):
        quest = make_quest(status=QuestStatus.CLAIMED)
        with pytest.raises(Conflict):
            guarded_update(quest.id, expected=QuestStatus.AVAILABLE, target=QuestStatus.CLAIMED)

        quest.refresh_from_db()
        assert quest.status == QuestStatus.CLAIMED

    def test_extra_filters_are_part_of_the_guard(self, make_quest, player, other_player, now):
        quest = make_quest(status=QuestStatus.CLAIMED, claimed_by=player, claimed_at=now)
        with pytest.raises(Conflict):
            guarded_update(
                quest.id,
                expected=QuestStatus.CLAIMED,
                target=QuestStatus.COMPLETED,
                filters={"claimed_by_id": other_player.id},
            )


class TestClaim:
    def test_claim_available_quest(self, quest_service, make_quest, player, now):
        quest = make_quest()

        claimed = quest_service.claim(quest_id=quest.id, user=player, now=now)

        assert claimed.status == QuestStatus.CLAIMED
        assert claimed.claimed_by_id == player.id
        assert claimed.claimed_at == now

    def test_creator_is_notified(self, quest_service, make_quest, admin, player):
        quest = make_quest(created_by=admin)
        quest_service.claim(quest_id=quest.id, user=player)

        assert Notification.objects.filter(user=admin, type=NotificationType.QUEST_CLAIMED).count() == 1

    def test_second_claim_is_refused(self, quest_service, make_quest, player, other_player):
        quest = make_quest()
        quest_service.claim(quest_id=quest.id, user=player)

        with pytest.raises(InvalidTransition) as exc:
            quest_service.claim(quest_id=quest.id, user=other_player)

        assert exc.value.message == "Quest is already claimed"
        quest.refresh_from_db()
        assert quest.claimed_by_id == player.id

    def test_unknown_quest(self, quest_service, player):
        with pytest.raises(NotFound):
            quest_service.claim(quest_id=999999, user=player)

    def test_skill_gate_blocks_claim(self, quest_service, make_quest, make_skill, give_skill, player):
        cooking = make_skill("Cooking")
        quest = make_quest(requirements=[(cooking, 3)])
        give_skill(player, cooking, 2)

        with pytest.raises(SkillRequirementsNotMet) as exc:
            quest_service.claim(quest_id=quest.id, user=player)

        assert exc.value.insufficient_skills == [cooking.id]
        assert exc.value.missing_skills == []
        quest.refresh_from_db()
        assert quest.status == QuestStatus.AVAILABLE
        assert quest.claimed_by_id is None

    def test_skill_gate_passes_at_exact_level(self, quest_service, make_quest, make_skill, give_skill, player):
        cooking = make_skill("Cooking")
        quest = make_quest(requirements=[(cooking, 3)])
        give_skill(player, cooking, 3)

        assert quest_service.claim(quest_id=quest.id, user=player).status == QuestStatus.CLAIMED

    def test_skill_gate_reports_missing_skill(self, quest_service, make_quest, make_skill, player):
        """No UserSkill row at all for a required skill."""
        carpentry = make_skill("Carpentry")
        quest = make_quest(requirements=[(carpentry, 1)])

        with pytest.raises(SkillRequirementsNotMet) as exc:
            quest_service.claim(quest_id=quest.id, user=player)

        assert exc.value.missing_skills == [carpentry.id]
        assert exc.value.insufficient_skills == []
        quest.refresh_from_db()
        assert quest.status == QuestStatus.AVAILABLE

    def test_lost_race_surfaces_as_conflict(self, quest_service, make_quest, player, mocker):
        """Another request claims between our read and our UPDATE."""
        quest = make_quest()
        real_filter = Quest.objects.filter

        def racing_filter(*args, **kwargs):
            if kwargs.get("status") == QuestStatus.AVAILABLE and "pk" in kwargs:
                real_filter(pk=quest.pk).update(status=QuestStatus.CLAIMED)
            return real_filter(*args, **kwargs)

        mocker.patch.object(Quest.objects, "filter", side_effect=racing_filter)

        with pytest.raises(Conflict):
            quest_service.claim(quest_id=quest.id, user=player)


class TestComplete:
    def test_claimant_completes(self, quest_service, make_quest, player, editor, now):
        quest = make_quest()
        quest_service.claim(quest_id=quest.id, user=player, now=now)

        done = quest_service.complete(quest_id=quest.id, user=player, now=now + timedelta(hours=1))

        assert done.status == QuestStatus.COMPLETED
        assert done.completed_at == now + timedelta(hours=1)
        assert Notification.objects.filter(user=editor, type=NotificationType.ADMIN_APPROVAL_NEEDED).exists()

    def test_non_claimant_is_denied(self, quest_service, make_quest, player, other_player):
        quest = make_quest()
        quest_service.claim(quest_id=quest.id, user=player)

        with pytest.raises(PermissionDenied):
            quest_service.complete(quest_id=quest.id, user=other_player)

    def test_complete_unclaimed_quest(self, quest_service, make_quest, player):
        quest = make_quest()
        with pytest.raises(InvalidTransition):
            quest_service.complete(quest_id=quest.id, user=player)


@pytest.fixture
def completed_quest(quest_service, make_quest, player, now):
    quest = make_quest(bounty="20.00")
    quest_service.claim(quest_id=quest.id, user=player, now=now)
    quest_service.complete(quest_id=quest.id, user=player, now=now)
    return quest


class TestApprove:
    def test_approve_credits_claimant_once(self, quest_service, completed_quest, player, editor):
        result = quest_service.approve(quest_id=completed_quest.id, actor=editor)

        player.refresh_from_db()
        assert result.quest.status == QuestStatus.APPROVED
        assert result.bounty_awarded == Decimal("20.00")
        assert result.experience_gained == 250
        assert player.bounty_balance == Decimal("20.00")
        assert player.experience == 250
        assert result.leveled_up is True
        assert result.new_level == 2

        completion = QuestCompletion.objects.get(quest=completed_quest)
        assert completion.status == CompletionStatus.APPROVED
        assert completion.reviewed_by_id == editor.id

    def test_second_approval_does_not_double_credit(self, quest_service, completed_quest, player, editor, admin):
        quest_service.approve(quest_id=completed_quest.id, actor=editor)

        with pytest.raises(InvalidTransition):
            quest_service.approve(quest_id=completed_quest.id, actor=admin)

        player.refresh_from_db()
        assert player.bounty_balance == Decimal("20.00")
        assert QuestCompletion.objects.filter(quest=completed_quest).count() == 1

    def test_player_cannot_approve(self, quest_service, completed_quest, other_player):
        with pytest.raises(PermissionDenied):
            quest_service.approve(quest_id=completed_quest.id, actor=other_player)

    def test_claimant_is_notified(self, quest_service, completed_quest, player, editor):
        quest_service.approve(quest_id=completed_quest.id, actor=editor)

        types = set(Notification.objects.filter(user=player).values_list("type", flat=True))
        assert {NotificationType.QUEST_APPROVED, NotificationType.LEVEL_UP} <= types

    def test_approve_requires_completed(self, quest_service, make_quest, editor):
        quest = make_quest()
        with pytest.raises(InvalidTransition):
            quest_service.approve(quest_id=quest.id, actor=editor)

    def test_refused_approval_is_logged(self, quest_service, make_quest, editor, caplog):
        quest = make_quest()

        with caplog.at_level(logging.WARNING, logger="apps.quests.services"):
            with pytest.raises(InvalidTransition):
                quest_service.approve(quest_id=quest.id, actor=editor)

        records = [r for r in caplog.records if r.name == "apps.quests.services"]
        assert any(r.getMessage().startswith("quest.approve.refused") for r in records)
        assert f"quest={quest.id}" in records[-1].getMessage()

    def test_unknown_quest_is_logged(self, quest_service, editor, caplog):
        with caplog.at_level(logging.WARNING, logger="apps.quests.services"):
            with pytest.raises(NotFound):
                quest_service.approve(quest_id=999999, actor=editor)

        assert any("quest.not_found quest=999999" in r.getMessage() for r in caplog.records)

    def test_concurrent_approval_credits_once(self, quest_service, completed_quest, player, editor, mocker):
        """Another moderator approves between our read and our UPDATE."""
        real_filter = Quest.objects.filter

        def racing_filter(*args, **kwargs):
            if kwargs.get("status") == QuestStatus.COMPLETED and "pk" in kwargs:
                real_filter(pk=completed_quest.pk).update(status=QuestStatus.APPROVED)
            return real_filter(*args, **kwargs)

        mocker.patch.object(Quest.objects, "filter", side_effect=racing_filter)

        with pytest.raises(Conflict):
            quest_service.approve(quest_id=completed_quest.id, actor=editor)

        player.refresh_from_db()
        assert player.bounty_balance == Decimal("0")
        assert player.experience == 0
        assert not QuestCompletion.objects.filter(quest=completed_quest).exists()


class TestReject:
    def test_reject_keeps_balance_and_stores_reason(self, quest_service, completed_quest, player, editor):
        quest = quest_service.reject(quest_id=completed_quest.id, actor=editor, reason="  Dishes still dirty ")

        player.refresh_from_db()
        assert quest.status == QuestStatus.REJECTED
        assert quest.rejection_reason == "Dishes still dirty"
        assert player.bounty_balance == Decimal("0")
        assert player.experience == 0

        completion = QuestCompletion.objects.get(quest=completed_quest)
        assert completion.status == CompletionStatus.REJECTED
        assert completion.notes == "Dishes still dirty"

        note = Notification.objects.get(user=player, type=NotificationType.QUEST_REJECTED)
        assert "Dishes still dirty" in note.message

    def test_reason_is_optional(self, quest_service, completed_quest, editor):
        quest = quest_service.reject(quest_id=completed_quest.id, actor=editor)
        assert quest.rejection_reason == ""

    def test_reset_reopens_rejected_quest(self, quest_service, completed_quest, player, other_player, editor):
        quest_service.reject(quest_id=completed_quest.id, actor=editor, reason="Try again")

        quest = quest_service.reset_quest(quest_id=completed_quest.id, actor=editor)

        assert quest.status == QuestStatus.AVAILABLE
        assert quest.claimed_by_id is None
        assert quest.rejection_reason == ""
        assert Notification.objects.filter(user=player, type=NotificationType.QUEST_AVAILABLE).exists()
        assert quest_service.claim(quest_id=quest.id, user=other_player).status == QuestStatus.CLAIMED

    def test_reset_of_available_quest_is_invalid(self, quest_service, make_quest, editor):
        quest = make_quest()
        with pytest.raises(InvalidTransition):
            quest_service.reset_quest(quest_id=quest.id, actor=editor)
