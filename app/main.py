"""
Streamlit Frontend for Team Budget Tracker

Two pages:
- Dashboard: per-team and per-member spend for a selected month
- Admin: teams, members and expenditures behind a static credential check

DESIGN PRINCIPLES:
1. Every month change or mutation triggers a full refetch
2. Every mutation reports its outcome in a visible message
3. Names always go through the attribution resolver
"""

import asyncio
from datetime import date
from decimal import Decimal

import streamlit as st

from teambudget.aggregation import spending_level
from teambudget.config import validate_all_settings
from teambudget.dates import (
    current_month,
    is_current_month,
    reference_today,
    shift_month,
)
from teambudget.models.budget import TEAM_COLORS, TeamWithExpenditures
from teambudget.orchestrator import (
    ActionResult,
    AdminConsole,
    DashboardFlow,
    create_app_components,
)


MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

LEVEL_COLORS = {"ok": "#10b981", "warning": "#f59e0b", "danger": "#ef4444"}


# Page configuration
st.set_page_config(
    page_title="Team Budget Tracker",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components():
    """Get or create application components (cached)."""
    return create_app_components(use_remote=True)


def format_money(value: Decimal) -> str:
    return f"¥{value:,.2f}"


def format_percentage(value) -> str:
    if value is None:
        return "No cap"
    if value == float("inf"):
        return "Over budget"
    return f"{value:.1f}%"


def show_result(result: ActionResult) -> None:
    """Report a mutation outcome; successful ones trigger a refetch."""
    if result.ok:
        st.success(result.message)
        st.rerun()
    else:
        st.error(result.message)


def month_selector() -> tuple[int, int]:
    """Previous/next month navigation. Never moves into the future."""
    if "month" not in st.session_state:
        st.session_state["month"] = current_month()
    year, month_index = st.session_state["month"]

    col1, col2, col3 = st.columns([1, 3, 1])
    with col1:
        if st.button("◀ Previous"):
            st.session_state["month"] = shift_month(year, month_index, -1)
            st.rerun()
    with col2:
        st.markdown(f"### {MONTH_NAMES[month_index]} {year}")
    with col3:
        if st.button("Next ▶", disabled=is_current_month(year, month_index)):
            st.session_state["month"] = shift_month(year, month_index, 1)
            st.rerun()
    return year, month_index


def render_team_card(team: TeamWithExpenditures) -> None:
    level = spending_level(team.percentage_used)
    st.markdown(
        f"<h4 style='border-left: 6px solid {team.color}; padding-left: 8px'>{team.name}</h4>",
        unsafe_allow_html=True,
    )
    col1, col2, col3 = st.columns(3)
    col1.metric("Budget", format_money(Decimal(team.total_budget)))
    col2.metric("Spent", format_money(team.total_spent))
    col3.metric("Remaining", format_money(team.remaining))

    st.progress(min(team.percentage_used / 100, 1.0))
    st.markdown(
        f"<span style='color: {LEVEL_COLORS[level]}'>"
        f"{format_percentage(team.percentage_used)} used</span>",
        unsafe_allow_html=True,
    )

    if team.members:
        st.dataframe(
            [
                {
                    "Member": m.name,
                    "Budget": format_money(m.budget) if m.budget is not None else "No cap",
                    "Spent": format_money(m.total_spent),
                    "Remaining": format_money(m.remaining) if m.remaining is not None else "-",
                    "Used": format_percentage(m.percentage_used),
                }
                for m in team.members
            ],
            hide_index=True,
            use_container_width=True,
        )
    if team.unassigned_spent:
        st.caption(f"Unassigned spend: {format_money(team.unassigned_spent)}")


def render_dashboard_page(dashboard: DashboardFlow):
    """Render the monthly dashboard."""
    st.title("📊 Team Budgets")
    year, month_index = month_selector()

    report = run_async(dashboard.load_month(year, month_index))

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Total budget", format_money(Decimal(report.total_budget)))
    col2.metric("Total spent", format_money(report.total_spent))
    col3.metric("Total remaining", format_money(report.total_remaining))
    col4.metric("Members", report.total_members)

    st.markdown("---")
    if not report.teams:
        st.info("No teams yet. Create one from the Admin page.")
        return

    columns = st.columns(2)
    for idx, team in enumerate(report.teams):
        with columns[idx % 2]:
            render_team_card(team)


def render_login(admin: AdminConsole) -> None:
    st.title("🔐 Admin Login")
    with st.form("admin_login"):
        username = st.text_input("Username")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Log in"):
            if admin.login(username, password):
                st.session_state["is_admin"] = True
                st.rerun()
            else:
                st.error("Invalid username or password.")


def render_teams_tab(admin: AdminConsole, view) -> None:
    st.subheader("Create team")
    with st.form("create_team", clear_on_submit=True):
        name = st.text_input("Team name")
        budget = st.number_input("Monthly budget", min_value=0, step=100)
        color = st.selectbox("Colour", TEAM_COLORS)
        if st.form_submit_button("Create"):
            show_result(run_async(admin.create_team(name, budget, color)))

    st.subheader("Existing teams")
    for team in view.teams:
        with st.expander(f"{team.name} ({team.budget if team.budget is not None else 'no cap'})"):
            with st.form(f"edit_team_{team.id}"):
                name = st.text_input("Name", value=team.name)
                unlimited = st.checkbox("No budget cap", value=team.budget is None)
                budget = st.number_input(
                    "Monthly budget", min_value=0, step=100, value=team.budget or 0
                )
                color = st.selectbox(
                    "Colour",
                    TEAM_COLORS,
                    index=TEAM_COLORS.index(team.color) if team.color in TEAM_COLORS else 0,
                )
                if st.form_submit_button("Save"):
                    show_result(run_async(admin.update_team(
                        team.id, name, None if unlimited else int(budget), color
                    )))
            if st.button("Delete team and its expenditures", key=f"delete_team_{team.id}"):
                show_result(run_async(admin.delete_team(team.id)))


def render_members_tab(admin: AdminConsole, view) -> None:
    if not view.teams:
        st.info("Create a team first.")
        return
    team_names = {team.id: team.name for team in view.teams}

    st.subheader("Add member")
    with st.form("create_member", clear_on_submit=True):
        team_id = st.selectbox("Team", list(team_names), format_func=team_names.get)
        name = st.text_input("Member name")
        if st.form_submit_button("Add"):
            show_result(run_async(admin.create_member(team_id, name)))

    st.subheader("Members")
    for member in view.members:
        with st.expander(f"{member.name} · {team_names.get(member.team_id, '?')}"):
            with st.form(f"edit_member_{member.id}"):
                name = st.text_input("Name", value=member.name)
                ids = list(team_names)
                team_id = st.selectbox(
                    "Team",
                    ids,
                    index=ids.index(member.team_id) if member.team_id in ids else 0,
                    format_func=team_names.get,
                )
                if st.form_submit_button("Save"):
                    show_result(run_async(admin.update_member(member.id, name, team_id)))
            if st.button("Delete member", key=f"delete_member_{member.id}"):
                show_result(run_async(admin.delete_member(member.id)))


def render_expenditures_tab(admin: AdminConsole, view) -> None:
    if not view.teams:
        st.info("Create a team first.")
        return
    team_names = {team.id: team.name for team in view.teams}
    member_names = {member.id: member.name for member in view.members}

    st.subheader("Record expenditure")
    with st.form("add_expenditure", clear_on_submit=True):
        team_id = st.selectbox("Team", list(team_names), format_func=team_names.get)
        member_id = st.selectbox(
            "Member",
            [""] + list(member_names),
            format_func=lambda mid: member_names.get(mid, "Unassigned"),
        )
        unit_price = st.number_input("Unit price", min_value=0.0, step=1.0, format="%.2f")
        quantity = st.number_input("Quantity", min_value=1, step=1)
        description = st.text_input("Description")
        spent_on: date = st.date_input("Date", value=reference_today())
        if st.form_submit_button("Record"):
            show_result(run_async(admin.add_expenditure({
                "team_id": team_id,
                "member_id": member_id or None,
                "unit_price": str(unit_price),
                "quantity": int(quantity),
                "description": description,
                "date": spent_on,
            })))

    st.subheader("This month")
    if not view.rows:
        st.info("No expenditures in this month.")
        return
    for row in view.rows:
        cols = st.columns([2, 2, 2, 4, 2, 1])
        cols[0].write(row["date"])
        cols[1].write(row["team"])
        cols[2].write(row["member"])
        cols[3].write(row["description"])
        cols[4].write(format_money(row["amount"]))
        if cols[5].button("🗑", key=f"delete_exp_{row['id']}"):
            show_result(run_async(admin.delete_expenditure(row["id"])))
        with st.expander("Edit"):
            render_expenditure_editor(admin, row, team_names, member_names)


def render_expenditure_editor(admin: AdminConsole, row, team_names, member_names) -> None:
    with st.form(f"edit_exp_{row['id']}"):
        team_ids = list(team_names)
        team_id = st.selectbox(
            "Team",
            team_ids,
            index=team_ids.index(row["team_id"]) if row["team_id"] in team_ids else 0,
            format_func=team_names.get,
        )
        member_ids = [""] + list(member_names)
        member_id = st.selectbox(
            "Member",
            member_ids,
            index=member_ids.index(row["member_id"]) if row["member_id"] in member_ids else 0,
            format_func=lambda mid: member_names.get(mid, "Unassigned"),
        )
        unit_price = st.number_input(
            "Unit price", min_value=0.0, step=1.0, format="%.2f",
            value=float(row["unit_price"]),
        )
        quantity = st.number_input("Quantity", min_value=1, step=1, value=row["quantity"])
        description = st.text_input("Description", value=row["description"])
        spent_on: date = st.date_input("Date", value=date.fromisoformat(row["date"]))
        if st.form_submit_button("Save"):
            show_result(run_async(admin.update_expenditure(row["id"], {
                "team_id": team_id,
                "member_id": member_id or None,
                "unit_price": str(unit_price),
                "quantity": int(quantity),
                "description": description,
                "date": spent_on,
            })))


def render_admin_page(admin: AdminConsole):
    """Render the admin console."""
    if not st.session_state.get("is_admin"):
        render_login(admin)
        return

    st.title("⚙️ Admin")
    year, month_index = month_selector()
    view = run_async(admin.load(year, month_index))

    tab_teams, tab_members, tab_expenditures, tab_maintenance = st.tabs(
        ["Teams", "Members", "Expenditures", "Maintenance"]
    )
    with tab_teams:
        render_teams_tab(admin, view)
    with tab_members:
        render_members_tab(admin, view)
    with tab_expenditures:
        render_expenditures_tab(admin, view)
    with tab_maintenance:
        if st.button("Backfill historical names"):
            result = run_async(admin.backfill_historical_names())
            st.success(result.message)
        render_settings_status()

    if st.sidebar.button("Log out"):
        st.session_state["is_admin"] = False
        st.rerun()


def render_settings_status():
    """Show which configuration sections loaded."""
    st.markdown("### Connection Status")
    status = validate_all_settings()

    if status.get("remote_store"):
        st.success("✅ Remote store - Configured")
    else:
        st.warning("⚠️ Remote store - Not configured, using local store only")

    if status.get("ingest_token"):
        st.success("✅ Ingestion endpoint - Token configured")
    else:
        st.error("❌ Ingestion endpoint - EXPENSE_API_TOKEN not set")


def main():
    """Main application entry point."""
    dashboard, admin, _ = get_components()

    st.sidebar.title("💰 Team Budget Tracker")
    st.sidebar.markdown("---")
    page = st.sidebar.radio("Navigate to:", ["📊 Dashboard", "⚙️ Admin"], index=0)

    if page == "📊 Dashboard":
        render_dashboard_page(dashboard)
    else:
        render_admin_page(admin)


if __name__ == "__main__":
    main()
