from datetime import datetime, timedelta, timezone

import pytest

from backend.app.analytics import (
    AnalyticsRangeError,
    AuditData,
    build_activity_feed,
    build_branch_analytics,
    build_member_analytics,
    build_package_performance,
    build_revenue,
    build_staff_performance,
    build_time_series,
    build_transactions,
    describe_activity,
    effective_limit,
    extract_amount,
    resolve_range,
)

BRANCH = "b7f9a3c2-0d4e-4c1a-9a53-6f2f6c1d2e11"
START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 8, tzinfo=timezone.utc)


def _log(action, ts, email="ana@fitgym.test", **body):
    return {
        "id": f"log-{action}-{ts.isoformat()}",
        "action": action,
        "timestamp": ts,
        "user_email": email,
        "branch_id": BRANCH,
        "success": True,
        "request_data": {"body": body},
        "response_data": {"success": True},
    }


def test_zero_rows_give_zeroed_revenue():
    revenue = build_revenue(AuditData(), START, END)
    assert revenue["total"] == 0
    assert revenue["renewals"] == 0
    assert revenue["newMemberships"] == 0
    assert revenue["upgrades"] == 0
    assert revenue["comparison"] == {"previous": 0, "change": 0, "changePercent": 0}
    assert revenue["dailyAverage"] == 0


def test_zero_rows_give_zeroed_structures():
    assert build_transactions([]) == []
    assert build_staff_performance([]) == []
    members = build_member_analytics([])
    assert members["total"] == 0
    assert members["retentionRate"] == 0
    assert members["packageDistribution"] == []
    series = build_time_series([], START, END)
    assert series["totalDays"] == 7
    assert series["averageDaily"] == 0
    assert all(d["revenue"] == 0 for d in series["daily"])


def test_amount_extraction_priority():
    assert extract_amount({"package_price": "40", "total_amount": 99, "amount_paid": 1}) == 40.0
    assert extract_amount({"total_amount": 99, "amount_paid": 1}) == 99.0
    assert extract_amount({"amount_paid": "12.5"}) == 12.5
    assert extract_amount({"package_price": "abc"}) == 0.0
    assert extract_amount({}) == 0.0


def test_revenue_split_upgrades_and_comparison():
    logs = [
        _log("CREATE_MEMBER", START + timedelta(hours=2), package_price=40),
        _log("PROCESS_MEMBER_RENEWAL", START + timedelta(days=1), package_price=60),
        _log("PROCESS_MEMBER_RENEWAL", START + timedelta(days=2), amount_paid=30),
    ]
    previous = [_log("CREATE_MEMBER", START - timedelta(days=3), package_price=100)]
    revenue = build_revenue(AuditData(logs=logs, previous_logs=previous), START, END)

    assert revenue["total"] == 130
    assert revenue["newMemberships"] == 40
    assert revenue["renewals"] == 90
    # Only the renewal above the threshold contributes.
    assert revenue["upgrades"] == pytest.approx(6.0)
    assert revenue["comparison"]["previous"] == 100
    assert revenue["comparison"]["change"] == 30
    assert revenue["comparison"]["changePercent"] == pytest.approx(30.0)
    assert revenue["dailyAverage"] == pytest.approx(130 / 7)


def test_previous_period_ignores_non_positive_amounts():
    logs = [_log("CREATE_MEMBER", START + timedelta(hours=2), package_price=40)]
    previous = [
        _log("CREATE_MEMBER", START - timedelta(days=3), package_price=100),
        _log("PROCESS_MEMBER_RENEWAL", START - timedelta(days=2), amount_paid=-60),
        _log("PROCESS_MEMBER_RENEWAL", START - timedelta(days=1), package_price=0),
    ]
    revenue = build_revenue(AuditData(logs=logs, previous_logs=previous), START, END)

    assert revenue["comparison"]["previous"] == 100
    assert revenue["comparison"]["change"] == -60
    assert revenue["comparison"]["changePercent"] == pytest.approx(-60.0)


def test_daily_revenue_sums_to_total():
    logs = [
        _log("CREATE_MEMBER", START + timedelta(hours=1), package_price=45),
        _log("CREATE_MEMBER", START + timedelta(days=3, hours=5), total_amount="80.5"),
        _log("PROCESS_MEMBER_RENEWAL", START + timedelta(days=3, hours=9), package_price=50),
        _log("PROCESS_MEMBER_RENEWAL", START + timedelta(days=6, hours=23), amount_paid=19.99),
        _log("PROCESS_MEMBER_RENEWAL", START + timedelta(days=4)),
    ]
    revenue = build_revenue(AuditData(logs=logs), START, END)
    series = build_time_series(logs, START, END)

    assert sum(d["revenue"] for d in series["daily"]) == pytest.approx(revenue["total"])
    assert series["peakDay"] == {"date": "2026-03-04", "revenue": pytest.approx(130.5)}
    assert series["averageDaily"] == pytest.approx(revenue["total"] / 7)
    day4 = next(d for d in series["daily"] if d["date"] == "2026-03-04")
    assert day4["newMembers"] == 1
    assert day4["renewals"] == 1
    assert day4["transactions"] == 2


def test_time_series_seeds_every_day_in_range():
    series = build_time_series([], START, START + timedelta(days=2, hours=6))
    assert [d["date"] for d in series["daily"]] == ["2026-03-01", "2026-03-02", "2026-03-03"]
    assert series["peakDay"]["date"] == "2026-03-01"


def test_transactions_listing_best_effort_fields():
    logs = [
        {
            **_log(
                "PROCESS_MEMBER_RENEWAL",
                START,
                email="sam.lee@fitgym.test",
                package_price=50,
                payment_method="card",
                package_name="Gold",
                member_first_name="Rita",
                member_last_name="Haddad",
            ),
            "response_data": {"success": True, "member_name": "Rita H."},
        },
        {
            **_log("CREATE_MEMBER", START, email=None, payment_method="voucher", package_name="Unknown Package"),
            "response_data": {},
        },
    ]
    first, second = build_transactions(logs)
    assert first["memberName"] == "Rita H."
    assert first["type"] == "Renewal"
    assert first["paymentMethod"] == "Card"
    assert first["processedBy"] == "sam.lee"
    assert first["packageName"] == "Gold"
    assert first["memberStatus"] == "Active"

    assert second["memberName"] == "Unknown Member"
    assert second["type"] == "New Membership"
    assert second["paymentMethod"] == "voucher"
    assert second["processedBy"] == "Unknown Staff"
    assert second["packageName"] == "Unknown Package"
    assert second["memberStatus"] == "Pending"
    assert second["amount"] == 0


def test_member_analytics_retention_and_distribution():
    logs = [
        _log("CREATE_MEMBER", START, member_type="individual"),
        _log("CREATE_MEMBER", START, package_type="family"),
        _log("PROCESS_MEMBER_RENEWAL", START, member_type="individual"),
        _log("PROCESS_MEMBER_RENEWAL", START),
    ]
    stats = build_member_analytics(logs)
    assert stats["total"] == 4
    assert stats["newThisPeriod"] == 2
    assert stats["renewalsThisPeriod"] == 2
    assert stats["retentionRate"] == pytest.approx(50.0)
    dist = {d["type"]: d for d in stats["packageDistribution"]}
    assert dist["individual"]["count"] == 2
    assert dist["individual"]["percentage"] == pytest.approx(50.0)
    assert dist["unknown"]["count"] == 1


def test_staff_performance_sorted_by_revenue():
    logs = [
        _log("CREATE_MEMBER", START, email="low@fitgym.test", package_price=10),
        _log("PROCESS_MEMBER_RENEWAL", START, email="high@fitgym.test", package_price=70),
        _log("CREATE_MEMBER", START, email="high@fitgym.test", package_price=5),
    ]
    perf = build_staff_performance(logs)
    assert [p["id"] for p in perf] == ["high@fitgym.test", "low@fitgym.test"]
    assert perf[0]["name"] == "high"
    assert perf[0]["revenue"] == 75
    assert perf[0]["renewals"] == 1
    assert perf[0]["newMembers"] == 1
    assert perf[0]["totalTransactions"] == 2


def test_package_performance_matches_package_id():
    packages = [
        {"id": "p-gold", "name": "Gold", "type": "individual", "price": "50.00"},
        {"id": "p-basic", "name": "Basic", "type": "individual", "price": None},
    ]
    logs = [
        _log("CREATE_MEMBER", START, package_id="p-gold", package_price=50),
        _log("PROCESS_MEMBER_RENEWAL", START, package_id="p-gold", package_price=45),
        _log("PROCESS_MEMBER_RENEWAL", START, package_id="p-gold"),
        _log("CREATE_MEMBER", START, package_id="p-other", package_price=500),
    ]
    gold, basic = build_package_performance(logs, packages)
    assert gold["id"] == "p-gold"
    assert gold["revenue"] == 95
    assert gold["sales"] == 2
    assert gold["price"] == 50.0
    assert basic["revenue"] == 0
    assert basic["price"] == 0.0


def test_branch_analytics_reads_store(store):
    now = datetime.now(timezone.utc)
    start, end = now - timedelta(days=1), now + timedelta(days=1)
    store.tables["audit_logs"] = [
        _log("CREATE_MEMBER", now, package_price=40),
        _log("PROCESS_MEMBER_RENEWAL", now - timedelta(days=1, hours=2), package_price=25),
        {**_log("PROCESS_MEMBER_RENEWAL", now, package_price=999), "success": False},
        {**_log("READ_ANALYTICS", now)},
        {**_log("CREATE_MEMBER", now, package_price=70), "branch_id": "another-branch"},
    ]
    store.seed("packages", branch_id=BRANCH, is_active=True, name="Gold", type="individual", price=40)

    data = build_branch_analytics(store, BRANCH, start, end, effective_limit(None))
    assert data["revenue"]["total"] == 40
    assert data["revenue"]["comparison"]["previous"] == 25
    assert len(data["transactions"]) == 1
    assert len(data["packagePerformance"]) == 1


def test_resolve_range_explicit_dates():
    start, end = resolve_range("2026-01-01", "2026-02-01T00:00:00Z")
    assert start == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert end == datetime(2026, 2, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "start,end,error",
    [
        ("2026-02-01", "2026-01-01", "Invalid date range"),
        ("2026-01-01", "2026-01-01", "Invalid date range"),
        ("2023-01-01", "2026-01-01", "Date range too large"),
        ("yesterday", "2026-01-01", "Invalid date"),
    ],
)
def test_resolve_range_rejects_bad_ranges(start, end, error):
    with pytest.raises(AnalyticsRangeError) as exc:
        resolve_range(start, end)
    assert exc.value.error == error


def test_resolve_range_defaults():
    now = datetime(2026, 12, 15, 10, tzinfo=timezone.utc)
    assert resolve_range(now=now) == (
        datetime(2026, 12, 1, tzinfo=timezone.utc),
        datetime(2027, 1, 1, tzinfo=timezone.utc),
    )
    # Only one bound given falls back to the calendar month.
    assert resolve_range("2026-01-01", None, now=now)[0] == datetime(2026, 12, 1, tzinfo=timezone.utc)
    assert resolve_range(period="week", now=now) == (now - timedelta(days=7), now)


def test_effective_limit():
    assert effective_limit(None) == 10000
    assert effective_limit(250) == 250
    assert effective_limit(90000) == 50000


def test_activity_feed_stats_and_descriptions():
    rows = [
        {"id": "1", "timestamp": "2026-03-02T10:00:00+00:00", "action": "CREATE_MEMBER", "user_email": "a@x.io", "success": True},
        {"id": "2", "timestamp": "2026-03-01T10:00:00+00:00", "action": "UPDATE_PACKAGE", "user_email": "b@x.io", "success": False, "status_code": 500},
        {"id": "3", "timestamp": "2026-03-01T09:00:00+00:00", "action": "DELETE_MEMBER", "user_email": "a@x.io", "success": True},
    ]
    feed = build_activity_feed(rows)
    assert feed["stats"] == {
        "totalActivities": 3,
        "successfulActivities": 2,
        "failedActivities": 1,
        "uniqueUsers": 2,
        "lastActivity": "2026-03-02T10:00:00+00:00",
    }
    assert feed["activities"][0]["description"] == "New member registration processed"
    assert feed["activities"][1]["description"] == "update package"
    assert feed["activities"][1]["details"]["statusCode"] == 500
    assert describe_activity({"action": "DELETE_MEMBER"}) == "Member record deleted"


def test_activity_feed_empty():
    assert build_activity_feed([])["stats"]["lastActivity"] is None
