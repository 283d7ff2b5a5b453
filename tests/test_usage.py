import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybot.services.usage import UsageLedger, UsageLimits, estimate_cost, estimate_tokens


def test_token_estimate_rounds_up_per_three_characters():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("abcd") == 2


def test_cost_estimate_uses_per_million_rates():
    assert estimate_cost(1000, 500) == pytest.approx(0.0028)
    assert estimate_cost(1000, 500, input_rate=1.0, output_rate=2.0) == pytest.approx(0.002)


def test_message_cap_blocks_until_the_next_day():
    limits = UsageLimits(daily_message_limit=50, daily_spending_limit=2.00)
    ledger = UsageLedger(day=date(2024, 1, 1), messages_used=50, spend_estimate=0.5, total_spent=7.25)

    blocked = ledger.check_allowed(limits, today=date(2024, 1, 1))
    assert blocked.allowed is False
    assert blocked.reason == "Daily message limit reached (50). Resets at midnight."

    allowed = ledger.check_allowed(limits, today=date(2024, 1, 2))
    assert allowed.allowed is True
    assert ledger.day == date(2024, 1, 2)
    assert ledger.messages_used == 0
    assert ledger.spend_estimate == 0.0
    assert ledger.total_spent == 7.25


def test_spending_cap_blocks_requests():
    ledger = UsageLedger(day=date(2024, 1, 1), spend_estimate=2.0)

    check = ledger.check_allowed(UsageLimits(), today=date(2024, 1, 1))

    assert check.allowed is False
    assert "Daily spending limit reached ($2.00)" in check.reason


def test_record_updates_daily_and_lifetime_totals():
    ledger = UsageLedger(day=date(2024, 1, 1))

    ledger.record(0.25, today=date(2024, 1, 1))
    ledger.record(0.5, today=date(2024, 1, 1))

    assert ledger.messages_used == 2
    assert ledger.spend_estimate == pytest.approx(0.75)
    assert ledger.total_spent == pytest.approx(0.75)
    assert ledger.remaining(UsageLimits(daily_message_limit=3, daily_spending_limit=1.0)) == {
        "messages": 1,
        "spending": pytest.approx(0.25),
    }


def test_record_on_a_new_day_starts_a_fresh_counter():
    ledger = UsageLedger(day=date(2024, 1, 1), messages_used=10, spend_estimate=1.0, total_spent=1.0)

    ledger.record(0.1, today=date(2024, 1, 2))

    assert ledger.messages_used == 1
    assert ledger.spend_estimate == pytest.approx(0.1)
    assert ledger.total_spent == pytest.approx(1.1)


def test_ledger_survives_serialisation():
    ledger = UsageLedger(day=date(2024, 3, 4), messages_used=3, total_words=1200, stories_completed=1)

    restored = UsageLedger.from_dict(ledger.to_dict())

    assert restored == ledger
