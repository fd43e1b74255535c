"""
Streamlit Operator Console for the Finance Tracker Sync Core

This is the interface an operator (or a user moving their own data) uses to
run a migration, wipe an account and look after local snapshots.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Explicit confirmation before anything destructive
3. Clear per-record error reporting after an import
4. Visual feedback for all operations
5. No hidden actions

Destructive actions (wipe, import) require the user to type DELETE first.
"""

import asyncio

import streamlit as st

from finsync.config import get_settings, validate_all_settings
from finsync.migration import MigrationPreconditionError
from finsync.models.entities import EntityType
from finsync.orchestrator import AppComponents, create_app_components
from finsync.services.storage import StorageConnectionError


# Page configuration
st.set_page_config(
    page_title="Finance Tracker Sync",
    page_icon="🔄",
    layout="wide",
    initial_sidebar_state="expanded",
)

CONFIRMATION_WORD = "DELETE"


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    return create_app_components()


def main():
    """Main application entry point."""
    components = get_components()

    st.sidebar.title("🔄 Finance Tracker Sync")
    st.sidebar.markdown("---")

    user_id = st.sidebar.text_input(
        "User ID",
        help="Account whose data the actions below operate on",
    ).strip()

    page = st.sidebar.radio(
        "Navigate to:",
        ["📥 Import Data", "🗑️ Wipe Data", "💾 Local Snapshot", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    st.sidebar.markdown(
        """
        **How importing works:**
        1. All existing data for the user is deleted
        2. The export file is imported type by type
        3. Records that fail are listed, the rest are kept
        """
    )

    if page == "⚙️ Settings":
        render_settings_page(components)
        return

    if not user_id:
        st.info("Enter a user ID in the sidebar to continue.")
        return

    if page == "📥 Import Data":
        render_import_page(components, user_id)
    elif page == "🗑️ Wipe Data":
        render_wipe_page(components, user_id)
    elif page == "💾 Local Snapshot":
        render_snapshot_page(components)


def render_import_page(components: AppComponents, user_id: str):
    """Render the migration upload page."""
    st.title("📥 Import Data")
    st.markdown("Upload a JSON export. **This replaces all existing data for the user.**")

    max_bytes = get_settings().app.max_upload_size_bytes
    uploaded_file = st.file_uploader("Export file", type=["json"])
    if not uploaded_file:
        return

    payload = uploaded_file.getvalue()
    if len(payload) > max_bytes:
        st.error(f"File is too large ({len(payload) // 1024} KB).")
        return

    confirmation = st.text_input(f"Type {CONFIRMATION_WORD} to replace all data for {user_id}")
    if not st.button("Start import", disabled=confirmation != CONFIRMATION_WORD):
        return

    with st.spinner("Importing..."):
        try:
            result = run_async(components.migration_flow.upload(user_id, payload))
        except MigrationPreconditionError as e:
            st.error(f"❌ {e}")
            return
        except StorageConnectionError as e:
            st.error(f"❌ Storage unavailable, import stopped: {e}")
            return

    summary = result.summary
    if summary.errors:
        st.warning(f"Imported {summary.imported} records, {summary.errors} skipped.")
    else:
        st.success(f"✅ Imported {summary.imported} records.")

    rows = [
        {
            "Type": entity_type,
            "Imported": detail.imported,
            "Errors": len(detail.errors),
        }
        for entity_type, detail in result.details.items()
    ]
    st.dataframe(rows, use_container_width=True)

    for entity_type, detail in result.details.items():
        if detail.errors:
            with st.expander(f"⚠️ {entity_type}: {len(detail.errors)} skipped"):
                for error in detail.errors:
                    st.markdown(f"- `{error.id}`: {error.error}")

    with st.expander("🔍 Raw result"):
        st.json(result.to_dict())


def render_wipe_page(components: AppComponents, user_id: str):
    """Render the wipe page."""
    st.title("🗑️ Wipe Data")
    st.markdown(
        f"Deletes every record of all {len(EntityType)} types for **{user_id}**. "
        "This cannot be undone."
    )

    confirmation = st.text_input(f"Type {CONFIRMATION_WORD} to confirm")
    if not st.button("Delete all data", type="primary", disabled=confirmation != CONFIRMATION_WORD):
        return

    try:
        result = run_async(components.migration_flow.wipe(user_id))
    except StorageConnectionError as e:
        st.error(f"❌ Storage unavailable: {e}")
        return

    st.success(f"✅ Deleted {result.total} records.")
    st.dataframe(
        [{"Type": key, "Deleted": count} for key, count in result.deleted.items()],
        use_container_width=True,
    )


def render_snapshot_page(components: AppComponents):
    """Render the local snapshot and backup page."""
    st.title("💾 Local Snapshot")
    persistence = components.persistence

    graph = components.sync_flow.current_graph
    if graph is None:
        graph = run_async(components.sync_flow.start())

    if graph is None:
        st.info("No local snapshot yet.")
    else:
        counts = {key: len(items) for key, items in graph.items()}
        st.markdown(f"**Records in snapshot:** {sum(counts.values())}")
        st.dataframe(
            [{"Type": key, "Records": count} for key, count in counts.items()],
            use_container_width=True,
        )

    if st.button("Create backup", disabled=graph is None):
        location = run_async(persistence.create_backup(graph))
        if location:
            st.success(f"✅ Backup written to {location}")
        else:
            st.error("❌ Backup could not be written. See the log for details.")

    st.markdown("---")
    st.markdown("### Backups")
    backups = run_async(persistence.list_backups())
    if not backups:
        st.info("No backups yet.")
    for name in backups:
        st.markdown(f"- `{name}`")


def render_settings_page(components: AppComponents):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    groups = [
        ("Sync", "sync"),
        ("Local persistence", "persistence"),
        ("Migration", "migration"),
        ("Cache", "cache"),
        ("Notifications", "notifications"),
        ("Google Sheets (Storage)", "google_sheets"),
        ("Application", "app"),
    ]

    for name, key in groups:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Storage")
    if components.sheets_client is not None:
        st.success("✅ Using Google Sheets")
    else:
        st.warning("Using in-memory storage. Data is lost when the app restarts.")

    st.markdown("### Autosave")
    enabled = st.toggle("Autosave local snapshot", value=components.persistence.autosave_enabled)
    components.persistence.set_autosave(enabled)

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
