"""
Pitch Up Streamlit UI - Live engine status with IPC bridge
PRIVACY: No audio displayed or saved, only ids and timings.
"""
import streamlit as st
import time
from pathlib import Path
from datetime import datetime
import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from pitchup import (
    ConfigManager, ControlChannel, EventLogger, SQLiteStore, UserNotificationPreference,
    ActiveHoursConfig, SchedulerConfig, ConfigError, read_status
)
from streamlit_autorefresh import st_autorefresh

# Page config
st.set_page_config(page_title="Pitch Up", page_icon="🎤", layout="wide")

# CSS
st.markdown("""
<style>
.status-idle { color: #6c757d; font-weight: bold; }
.status-live { color: #dc3545; font-weight: bold; }
.status-review { color: #fd7e14; font-weight: bold; }
.waiting-banner {
    background-color: #fff3cd;
    border: 1px solid #ffc107;
    color: #856404;
    padding: 1rem;
    border-radius: 0.5rem;
    margin: 1rem 0;
}
</style>
""", unsafe_allow_html=True)

# Auto-refresh every 1 second
st_autorefresh(interval=1000, key="datarefresh")

# Initialize session state
if 'config_manager' not in st.session_state:
    st.session_state.config_manager = ConfigManager()
if 'event_logger' not in st.session_state:
    st.session_state.event_logger = EventLogger()
if 'control' not in st.session_state:
    st.session_state.control = ControlChannel()
if 'store' not in st.session_state:
    st.session_state.store = SQLiteStore()

st.title("🎤 Pitch Up")
st.caption("Random pitch prompts - 2 minutes to record")

status = read_status(max_age_sec=3.0)

# Status Section
st.header("📊 Live Status")

if status is None:
    st.markdown("""
    <div class="waiting-banner">
        <strong>⏳ Waiting for the engine...</strong><br>
        <br>
        To start prompting, run in a terminal:<br>
        <code>python dev_runner.py --verbose</code>
    </div>
    """, unsafe_allow_html=True)
else:
    state = status['state']
    if state == 'idle':
        st.markdown('<p class="status-idle">● IDLE - Waiting for the next prompt</p>', unsafe_allow_html=True)
    elif state == 'review':
        st.markdown('<p class="status-review">● REVIEW - Submit or retake</p>', unsafe_allow_html=True)
    elif status.get('awaiting_take'):
        st.markdown('<p class="status-live">● RETAKE - Press Record to start the new take</p>', unsafe_allow_html=True)
    else:
        st.markdown(f'<p class="status-live">● {state.upper()}</p>', unsafe_allow_html=True)

    col1, col2, col3, col4 = st.columns(4)

    with col1:
        remaining = status['time_remaining_sec']
        st.metric("Window", f"{remaining:.0f}s left" if remaining is not None else "-")

    with col2:
        recording = status['recording_remaining_sec']
        st.metric("Recording", f"{recording:.0f}s left" if recording is not None else "-")

    with col3:
        st.metric("Retakes", status['retake_count'])

    with col4:
        next_fire_at = status['next_fire_at']
        st.metric(
            "Next Prompt",
            datetime.fromtimestamp(next_fire_at).strftime("%H:%M:%S") if next_fire_at else "-"
        )

    if not status['in_active_hours']:
        st.info(f"🌙 Outside active hours ({status['active_hours']})")

    if status['last_attempts']:
        attempts = " | ".join(
            f"{a['channel']}: {'✅' if a['delivered'] else '❌ ' + (a['error'] or '')}"
            for a in status['last_attempts']
        )
        st.caption(f"Last delivery: {attempts}")

    # Controls (debug panel)
    st.subheader("Controls")
    control = st.session_state.control
    col1, col2, col3, col4, col5 = st.columns(5)

    if col1.button("🔔 Trigger Now", disabled=state != 'idle', key="trigger_btn"):
        control.send("trigger")
    if col2.button("⏺ Record", disabled=not (state == 'armed' or status.get('awaiting_take')), key="start_btn"):
        control.send("start")
    if col3.button("⏹ Stop", disabled=state != 'recording' or bool(status.get('awaiting_take')), key="stop_btn"):
        control.send("stop")
    if col4.button("🔄 Retake", disabled=state != 'review', key="retake_btn"):
        control.send("retake")
    caption = st.text_input("Caption", key="caption", disabled=state != 'review')
    if col5.button("📤 Submit", disabled=state != 'review', key="submit_btn"):
        control.send("submit", caption=caption or None)

st.divider()

# Schedule Section
st.header("⏰ Schedule")
config = st.session_state.config_manager.load_config()
col1, col2 = st.columns(2)
hours = col1.slider("Active hours", 0, 24, (config.active_hours.start_hour, config.active_hours.end_hour))
delays = col2.slider(
    "Delay between prompts (min)", 5, 360,
    (int(config.scheduler.min_delay_sec // 60), int(config.scheduler.max_delay_sec // 60))
)

if st.button("💾 Save Schedule"):
    try:
        config.active_hours = ActiveHoursConfig(
            start_hour=hours[0],
            end_hour=hours[1],
            jitter_max_sec=config.active_hours.jitter_max_sec,
            timezone=config.active_hours.timezone
        )
        config.scheduler = SchedulerConfig(min_delay_sec=delays[0] * 60.0, max_delay_sec=delays[1] * 60.0)
        st.session_state.config_manager.save_config(config)
        st.success("✅ Saved! Restart dev_runner to apply.")
    except ConfigError as e:
        st.error(f"❌ {e}")

st.divider()

# Notifications Section
st.header("📬 Notifications")
user_id = status['user_id'] if status else "local"
preference = st.session_state.store.load_user_preference(user_id)
push_enabled = st.checkbox("Push notifications", value=preference.push_enabled)
email_enabled = st.checkbox("Email notifications", value=preference.email_enabled)
email_address = st.text_input("Email address", value=preference.email_address or "", disabled=not email_enabled)

if st.button("💾 Save Notifications"):
    st.session_state.store.save_user_preference(UserNotificationPreference(
        user_id=user_id,
        push_enabled=push_enabled,
        email_enabled=email_enabled,
        email_address=email_address or None
    ))
    st.success("✅ Saved!")

st.divider()

# History Section
st.header("📈 History")
windows = st.session_state.store.list_windows(user_id, limit=50)
if windows:
    submitted = [w for w in windows if w.state.value == 'submitted']
    late = [w for w in submitted if w.is_late]

    col1, col2, col3 = st.columns(3)
    col1.metric("Submitted", len(submitted))
    col2.metric("Expired", len(windows) - len(submitted))
    col3.metric("Late Rate", f"{len(late) / len(submitted):.0%}" if submitted else "-")

    df = pd.DataFrame([w.to_dict() for w in windows])
    df['armed_at'] = pd.to_datetime(df['armed_at'], unit='s')
    st.dataframe(
        df[['armed_at', 'state', 'is_late', 'retake_count', 'recording_duration_sec', 'caption']],
        use_container_width=True
    )
else:
    st.info("No pitch windows yet")

st.divider()

# Event Log
st.header("📋 Event Log")
events = st.session_state.event_logger.get_recent_events(100)
if events:
    df = pd.DataFrame(events)
    st.dataframe(df[['timestamp', 'event_type', 'reason']].tail(20), use_container_width=True)
else:
    st.info("No events yet")

if st.button("🗑️ Purge Logs"):
    st.session_state.event_logger.purge_logs()
    st.success("✅ Purged!")

st.caption(f"Pitch Up - refreshed {time.strftime('%H:%M:%S')}")
