"""
Monthly allocation maths and the allocation editor's form state.
"""

from datetime import date

import pytest

from forecasting.allocation import (
    ACTUAL,
    ACTUALS_LOCKED,
    MONTH_NOT_AVAILABLE,
    PROJECTION,
    VIEW_JOB_DURATION,
    AllocationEditor,
    AllocationJob,
    AllocationUpdate,
    MonthlyAllocation,
    allocation_status,
    calculate_summary,
    fiscal_year_label,
    fiscal_year_of,
    fiscal_year_overlap_months,
    format_month_label,
    format_number_with_commas,
    months_between,
    parse_formatted_number,
    update_monthly_allocation,
    validate_allocation_update,
)

FY_MONTHS = ["2024-11", "2024-12", "2025-01", "2025-02", "2025-03"]


def make_job(allocations=None, job_type="SWAG", probability=50):
    # effective totals for the default SWAG job: revenue 60,000 / cost 30,000
    return AllocationJob(
        id=1,
        name="Plant upgrade",
        type=job_type,
        probability=probability,
        start_date=date(2024, 9, 15),
        end_date=date(2025, 3, 10),
        total_revenue=120000,
        total_cost=60000,
        monthly_allocations=list(allocations or []),
    )


def actual_november():
    return MonthlyAllocation("2024-11", allocated_revenue=10000, allocated_cost=2000,
                             allocation_type=ACTUAL, is_locked=True)


class TestNumbers:
    @pytest.mark.parametrize("value,text", [
        (1250000, "1,250,000"),
        (1234.5, "1,234.5"),
        (0.125, "0.13"),
        (1000.10, "1,000.1"),
        (0, "0"),
        (-2500, "-2,500"),
    ])
    def test_format(self, value, text):
        assert format_number_with_commas(value) == text

    @pytest.mark.parametrize("text,value", [
        ("1,250,000", 1250000),
        ("abc", 0),
        ("", 0),
        (None, 0),
        ("  3.5", 3.5),
        ("12abc", 12),
        ("-7", -7),
    ])
    def test_parse(self, text, value):
        assert parse_formatted_number(text) == value


class TestMonths:
    def test_months_between(self):
        assert months_between(date(2024, 11, 15), date(2025, 2, 1)) == ["2024-11", "2024-12", "2025-01", "2025-02"]
        assert months_between("2024-06-01", "2024-05-01") == []

    def test_labels(self):
        assert format_month_label("2024-11") == "Nov 2024"
        assert fiscal_year_label(2024) == "FY 2024-25"

    def test_fiscal_year_runs_november_to_october(self):
        assert fiscal_year_of(date(2024, 11, 1)) == 2024
        assert fiscal_year_of(date(2025, 10, 31)) == 2024
        assert fiscal_year_of(date(2024, 10, 31)) == 2023

    def test_overlap(self):
        job = make_job()
        assert fiscal_year_overlap_months(job, 2024) == FY_MONTHS
        assert fiscal_year_overlap_months(job, 2023) == ["2024-09", "2024-10"]
        assert fiscal_year_overlap_months(job, 2026) == []


class TestValidation:
    def test_month_outside_view(self):
        job = make_job([MonthlyAllocation(m) for m in FY_MONTHS])
        result = validate_allocation_update(job, AllocationUpdate(month="2024-09", revenue=100))
        assert MONTH_NOT_AVAILABLE in result.errors
        assert not result.is_valid

    def test_explicit_visible_months(self):
        job = make_job([MonthlyAllocation(m) for m in FY_MONTHS])
        result = update_monthly_allocation(job, AllocationUpdate(month="2024-12", revenue=100),
                                           available_months=["2025-01"])
        assert result.success is False
        assert result.errors == [MONTH_NOT_AVAILABLE]

    def test_displayed_month_beyond_job_dates_is_accepted(self):
        job = make_job([MonthlyAllocation(m) for m in FY_MONTHS])
        result = update_monthly_allocation(job, AllocationUpdate(month="2025-06", cost=250),
                                           available_months=FY_MONTHS + ["2025-06"])
        assert result.success
        assert result.job.allocation("2025-06").allocated_cost == 250
        assert [a.month for a in result.job.monthly_allocations][-1] == "2025-06"

    def test_negative_values(self):
        job = make_job([MonthlyAllocation("2024-12")])
        result = validate_allocation_update(job, AllocationUpdate(month="2024-12", revenue=-1, cost=-1))
        assert result.errors == ["Revenue cannot be negative", "Cost cannot be negative"]

    def test_over_allocation_uses_weighted_total(self):
        job = make_job([MonthlyAllocation("2024-12", allocated_revenue=50000), MonthlyAllocation("2025-01")])
        over = validate_allocation_update(job, AllocationUpdate(month="2025-01", revenue=10000.5))
        assert over.errors == ["Total allocated revenue exceeds job total"]
        within_slack = validate_allocation_update(job, AllocationUpdate(month="2025-01", revenue=10000.005))
        assert within_slack.is_valid

    def test_backlog_is_not_weighted(self):
        job = make_job([MonthlyAllocation("2024-12")], job_type="BACKLOG", probability=100)
        assert validate_allocation_update(job, AllocationUpdate(month="2024-12", revenue=120000)).is_valid

    def test_locked_actual(self):
        job = make_job([actual_november()])
        result = update_monthly_allocation(job, AllocationUpdate(month="2024-11", revenue=1, allocation_type=ACTUAL))
        assert result.errors == [ACTUALS_LOCKED]

    def test_update_does_not_mutate_input(self):
        job = make_job([MonthlyAllocation("2024-12")])
        result = update_monthly_allocation(job, AllocationUpdate(month="2024-12", revenue=500, notes="kickoff"),
                                           updated_by="pat")
        assert result.success
        assert job.allocation("2024-12").allocated_revenue == 0
        row = result.job.allocation("2024-12")
        assert (row.allocated_revenue, row.notes, row.updated_by) == (500, "kickoff", "pat")
        assert result.job.last_allocation_update is not None


class TestSummary:
    def test_summary_and_status(self):
        job = make_job([actual_november(), MonthlyAllocation("2024-12", allocated_revenue=5000, allocated_cost=1000)])
        summary = calculate_summary(job)
        assert summary.total_revenue == 60000
        assert summary.total_profit == 30000
        assert summary.allocated_revenue == 15000
        assert summary.remaining_cost == 27000
        assert summary.actuals_revenue == 10000
        assert summary.projections_cost == 1000
        assert summary.allocation_percentage_revenue == 25
        assert allocation_status(job) == "partial"

    def test_not_started(self):
        assert allocation_status(make_job()) == "not_started"


class TestEditor:
    def test_fiscal_year_view(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        assert editor.visible_months == FY_MONTHS
        assert [a.month for a in editor.visible_allocations] == FY_MONTHS
        assert editor.display_value("2024-12", "revenue") == "0"

    def test_default_fiscal_year_from_today(self):
        editor = AllocationEditor(make_job(), today=date(2025, 1, 20))
        assert editor.fiscal_year == 2024

    def test_blur_commits_and_clears_input(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        editor.change_input("2024-12", "revenue", "12,000")
        assert editor.display_value("2024-12", "revenue") == "12,000"
        result = editor.blur("2024-12", "revenue")
        assert result.success
        assert editor.input_value("2024-12", "revenue") == ""
        assert editor.job.allocation("2024-12").allocated_revenue == 12000
        assert editor.display_value("2024-12", "revenue") == "12,000"
        assert editor.unsaved_changes

    def test_blur_reverts_rejected_input(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        editor.change_input("2024-12", "revenue", "12,000")
        editor.blur("2024-12", "revenue")
        editor.change_input("2024-12", "revenue", "70,000")
        result = editor.blur("2024-12", "revenue")
        assert result.errors == ["Total allocated revenue exceeds job total"]
        assert editor.input_value("2024-12", "revenue") == "12,000"
        assert editor.job.allocation("2024-12").allocated_revenue == 12000

    def test_blur_outside_view(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        editor.change_input("2024-09", "cost", "100")
        result = editor.blur("2024-09", "cost")
        assert result.errors == [MONTH_NOT_AVAILABLE]
        assert editor.input_value("2024-09", "cost") == "0"

    def test_blur_without_typing_keeps_value(self):
        editor = AllocationEditor(make_job([MonthlyAllocation("2024-12", allocated_cost=900)]), fiscal_year=2024)
        assert editor.blur("2024-12", "cost").success
        assert editor.job.allocation("2024-12").allocated_cost == 900
        assert not editor.unsaved_changes

    def test_unparseable_input_commits_zero(self):
        editor = AllocationEditor(make_job([MonthlyAllocation("2024-12", allocated_cost=900)]), fiscal_year=2024)
        editor.change_input("2024-12", "cost", "abc")
        assert editor.blur("2024-12", "cost").success
        assert editor.job.allocation("2024-12").allocated_cost == 0

    def test_switching_view_clears_inputs_keeps_values(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        editor.change_input("2024-12", "revenue", "12,000")
        editor.blur("2024-12", "revenue")
        editor.change_input("2025-01", "cost", "5,000")

        editor.set_view_mode(VIEW_JOB_DURATION)
        assert editor.inputs == {}
        assert editor.visible_months == ["2024-09", "2024-10"] + FY_MONTHS
        assert editor.display_value("2024-12", "revenue") == "12,000"
        assert editor.display_value("2025-01", "cost") == "0"

    def test_switching_fiscal_year_keeps_rows_outside_view(self):
        editor = AllocationEditor(make_job([MonthlyAllocation("2024-09", allocated_revenue=500)]), fiscal_year=2024)
        assert [a.month for a in editor.job.monthly_allocations] == ["2024-09"] + FY_MONTHS
        assert "2024-09" not in [a.month for a in editor.visible_allocations]
        editor.change_input("2024-12", "revenue", "1")
        editor.set_fiscal_year(2023)
        assert editor.inputs == {}
        assert editor.visible_months == ["2024-09", "2024-10"]
        assert editor.display_value("2024-09", "revenue") == "500"

    def test_unknown_view_mode(self):
        with pytest.raises(ValueError):
            AllocationEditor(make_job(), view_mode="quarterly")

    def test_locked_actual_via_editor(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        editor.change_input("2024-11", "revenue", "10,000")
        editor.blur("2024-11", "revenue")
        assert editor.set_allocation_type("2024-11", ACTUAL).success
        editor.change_input("2024-11", "revenue", "9,000")
        result = editor.blur("2024-11", "revenue")
        assert result.errors == [ACTUALS_LOCKED]
        assert editor.input_value("2024-11", "revenue") == "10,000"

    def test_straight_line_skips_actuals(self):
        editor = AllocationEditor(make_job([actual_november()]), fiscal_year=2024)
        editor.change_input("2024-12", "revenue", "3")
        editor.straight_line()
        assert editor.inputs == {}
        projections = [a for a in editor.job.monthly_allocations if a.allocation_type == PROJECTION]
        assert {a.allocated_revenue for a in projections} == {12500}
        assert {a.allocated_cost for a in projections} == {7000}
        assert editor.job.allocation("2024-11").allocated_revenue == 10000
        assert editor.status == "complete"

    def test_clear_projections(self):
        editor = AllocationEditor(make_job([actual_november()]), fiscal_year=2024)
        editor.straight_line()
        editor.clear_projections()
        assert editor.summary.allocated_revenue == 10000
        assert editor.status == "partial"

    def test_distribute_remaining_fills_empty_months_only(self):
        allocations = [actual_november(), MonthlyAllocation("2024-12", allocated_revenue=20000)]
        editor = AllocationEditor(make_job(allocations), fiscal_year=2024)
        editor.distribute_remaining()
        job = editor.job
        assert job.allocation("2024-12").allocated_revenue == 20000
        assert [job.allocation(m).allocated_revenue for m in FY_MONTHS[2:]] == [10000, 10000, 10000]
        assert [job.allocation(m).allocated_cost for m in FY_MONTHS[1:]] == [7000, 7000, 7000, 7000]
        assert editor.status == "complete"

    def test_save_resets_unsaved_flag(self):
        editor = AllocationEditor(make_job(), fiscal_year=2024)
        editor.straight_line()
        assert editor.unsaved_changes
        saved = editor.save()
        assert not editor.unsaved_changes
        assert saved is editor.job
