import os
import tkinter as tk
from tkinter import filedialog
from typing import Dict, List, Optional

import streamlit as st

from watchstreak.domain import MediaItem, PlaybackStatus
from watchstreak.log import configure_logging
from watchstreak.runtime import EngineHost
from watchstreak.settings import load_settings, save_settings
from watchstreak.utils import format_seconds_to_human_readable

# === CONSTANTS & CONFIGURATION ===
PAGE_TITLE = "Watchstreak"
PAGE_ICON = "🔥"
GOAL_CHOICES_MINUTES = [5, 10, 15, 30, 45, 60, 90, 120]
RATE_CHOICES = [0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0]


# === INITIALIZATION ===
def load_css(file_name=os.path.join(os.path.abspath(os.path.dirname(__file__)), "styles.css")):
    if not os.path.exists(file_name):
        return
    with open(file_name) as f:
        st.markdown(f"<style>{f.read()}</style>", unsafe_allow_html=True)


st.set_page_config(
    page_title=PAGE_TITLE,
    page_icon=PAGE_ICON,
    layout="centered",
    initial_sidebar_state="expanded"
)

load_css()


@st.cache_resource
def get_engine(player_executable: str, storage_path: str) -> EngineHost:
    """One engine per process; rebuilt only when the player or store changes."""
    settings = load_settings()
    settings["player_executable"] = player_executable
    settings["storage_path"] = storage_path
    configure_logging(settings.get("log_level"))
    return EngineHost(settings)


# === HELPER FUNCTIONS ===
def open_file_dialog(select_folder: bool = False) -> Optional[str]:
    """Opens a system-native file or folder selection dialog."""
    try:
        root = tk.Tk()
        root.withdraw()
        root.attributes('-topmost', True)
        root.lift()
        root.update_idletasks()
        path = filedialog.askdirectory() if select_folder else filedialog.askopenfilename()
        root.destroy()
        return path if path else None
    except tk.TclError:
        return None


def add_and_play(engine: EngineHost, path: str) -> None:
    service = engine.service
    items = engine.call(service.add_path, path)
    if not items:
        st.warning(f"No playable media found in {path}")
        return
    first, rest = items[0], items[1:]
    for item in rest:
        engine.call(service.controller.enqueue_last, item)
    engine.call(service.controller.play, first)


# === COMPONENT RENDERERS ===
def render_sidebar(engine: EngineHost, settings: Dict):
    service = engine.service
    with st.sidebar:
        st.markdown("### Library")

        if st.button("📂 Open Folder", use_container_width=True):
            if p := open_file_dialog(select_folder=True):
                st.session_state['pending_play'] = p
                st.rerun()

        if st.button("📄 Open File", use_container_width=True):
            if p := open_file_dialog(select_folder=False):
                st.session_state['pending_play'] = p
                st.rerun()

        st.markdown("<br>", unsafe_allow_html=True)

        stats = engine.call(service.stats)
        with st.expander("🎯 Daily goal"):
            current_minutes = stats["daily_goal_seconds"] // 60
            choices = sorted(set(GOAL_CHOICES_MINUTES + [current_minutes]))
            minutes = st.select_slider("Minutes per day", options=choices, value=current_minutes)
            if minutes != current_minutes:
                engine.call(service.set_daily_goal, minutes * 60)
                st.rerun()

        with st.expander("⚙️ Preferences"):
            if 'w_exe' not in st.session_state:
                st.session_state.w_exe = settings.get('player_executable', 'mpv')
            st.text_input("Player path", key="w_exe")

            if st.button("Save", use_container_width=True):
                settings['player_executable'] = st.session_state.w_exe
                save_settings(settings)
                st.rerun()

        if st.button("🛑 Quit", type="secondary", use_container_width=True):
            engine.close()
            os._exit(0)


def render_progress(engine: EngineHost):
    stats = engine.call(engine.service.stats)
    daily, goal = stats["daily_total"], stats["daily_goal_seconds"]

    col_today, col_streak, col_total = st.columns(3)
    col_today.metric("Today", format_seconds_to_human_readable(daily),
                     help=f"Goal: {format_seconds_to_human_readable(goal)}")
    col_streak.metric("Streak", f"{stats['streak_days']} day(s)")
    col_total.metric("All time", format_seconds_to_human_readable(stats["total_seconds"]))

    st.progress(min(1.0, daily / goal) if goal else 0.0,
                text="Goal reached ✓" if stats["goal_met_today"] else "Daily goal")

    history = {day.strftime("%a"): round(seconds / 60, 1) for day, seconds in stats["history"]}
    st.bar_chart(history, height=160)


def render_now_playing(engine: EngineHost):
    controller = engine.service.controller
    item: Optional[MediaItem] = engine.call(lambda: controller.current)
    status: PlaybackStatus = engine.call(lambda: controller.status)

    for message in engine.errors:
        st.error(message)
    engine.errors.clear()

    if item is None:
        return

    engine.call(engine.service.remember_duration)
    position = engine.call(lambda: controller.position_seconds)
    duration = engine.call(lambda: controller.duration_seconds)

    st.markdown(f"""
    <div class="cue-card now-playing">
        <div class="card-title">{item.title}</div>
        <div class="badge-container">
            <span class="badge b-accent">{status.value.upper()}</span>
            <span class="badge b-folder">{item.kind.value.upper()}</span>
        </div>
        <div class="stats-row">
            <span>{format_seconds_to_human_readable(position)} / {format_seconds_to_human_readable(duration or None)}</span>
        </div>
    </div>
    """, unsafe_allow_html=True)

    c_prev, c_toggle, c_stop, c_next = st.columns(4)
    if c_prev.button("⏮", use_container_width=True):
        engine.call(controller.prev)
        st.rerun()
    if status == PlaybackStatus.PLAYING:
        if c_toggle.button("⏸", use_container_width=True):
            engine.call(controller.pause)
            st.rerun()
    elif c_toggle.button("▶", use_container_width=True):
        engine.call(controller.resume)
        st.rerun()
    if c_stop.button("⏹", use_container_width=True):
        engine.call(controller.stop)
        st.rerun()
    if c_next.button("⏭", use_container_width=True):
        engine.call(controller.next)
        st.rerun()

    current_rate = engine.call(lambda: controller.rate)
    rates = sorted(set(RATE_CHOICES + [current_rate]))
    rate = st.select_slider("Speed", options=rates, value=current_rate)
    if rate != current_rate:
        engine.call(controller.set_rate, rate)


def render_queue(engine: EngineHost):
    controller = engine.service.controller
    queue: List[MediaItem] = engine.call(lambda: controller.queue)
    if not queue:
        return

    st.markdown("#### Up next")
    for index, item in enumerate(queue):
        c_title, c_up, c_remove = st.columns([0.8, 0.1, 0.1])
        c_title.write(item.title)
        if c_up.button("↑", key=f"up_{index}_{item.id}", disabled=index == 0):
            engine.call(controller.reorder_queue, index, index - 1)
            st.rerun()
        if c_remove.button("✕", key=f"rm_{index}_{item.id}"):
            engine.call(controller.remove_from_queue, item.id, item.kind)
            st.rerun()
    if st.button("Clear queue"):
        engine.call(controller.clear_queue)
        st.rerun()


def render_card(item: MediaItem, engine: EngineHost):
    """Renders a single library item with its progress and controls."""
    service = engine.service
    pos, dur = item.last_position_seconds, item.duration_seconds
    is_done = item.is_completed
    k_id = item.id

    badges = [f'<span class="badge b-folder">{item.kind.value.upper()}</span>']
    if is_done:
        badges.append('<span class="badge b-success">✓ COMPLETED</span>')

    with st.container():
        col_info, col_actions = st.columns([0.72, 0.28], gap="small")

        with col_info:
            remaining = f"{format_seconds_to_human_readable(dur - pos)} left" if dur else ""
            st.markdown(f"""
            <div class="cue-card">
                <div class="card-title">{item.title}</div>
                <div class="badge-container">{"".join(badges)}</div>
                <div class="stats-row">
                    <span>{format_seconds_to_human_readable(pos)} / {format_seconds_to_human_readable(dur or None)}</span>
                    <span class="time-remaining">{'Finished' if is_done else remaining}</span>
                </div>
            </div>
            """, unsafe_allow_html=True)

        with col_actions:
            st.write("")
            play_label = "↺ Replay" if is_done else "▶ Resume"
            if st.button(play_label, key=f"play_{k_id}", use_container_width=True):
                if is_done:
                    engine.call(service.reset_item, item.id)
                engine.call(service.play_item, item.id)
                st.rerun()

            c_queue, c_del = st.columns([1, 1], gap="small")
            with c_queue:
                if st.button("＋", key=f"queue_{k_id}", help="Add to queue", use_container_width=True):
                    engine.call(service.controller.enqueue_last, item)
                    st.rerun()

            with c_del:
                if st.session_state.get('confirm_del') == item.id:
                    if st.button("✓", key=f"y_{k_id}", use_container_width=True, help="Confirm Delete"):
                        engine.call(service.delete_item, item.id)
                        del st.session_state['confirm_del']
                        st.rerun()
                else:
                    if st.button("✕", key=f"del_{k_id}", use_container_width=True, help="Remove from Library"):
                        st.session_state['confirm_del'] = item.id
                        st.rerun()

    st.markdown("<div style='margin-bottom: 12px;'></div>", unsafe_allow_html=True)


# === MAIN ENTRY POINT ===
def main():
    settings = load_settings()
    engine = get_engine(settings["player_executable"], settings["storage_path"])

    if 'pending_play' in st.session_state:
        add_and_play(engine, st.session_state.pop('pending_play'))
        st.rerun()

    render_sidebar(engine, settings)

    st.markdown('<div class="main-header">Watchstreak.</div>', unsafe_allow_html=True)
    render_progress(engine)
    render_now_playing(engine)
    render_queue(engine)

    if st.button("↻ Refresh", help="Update position and totals"):
        st.rerun()

    library = engine.call(engine.service.get_library)
    st.markdown(f'<div class="sub-header">Resume where you left off • {len(library)} items</div>',
                unsafe_allow_html=True)
    query = st.text_input("Search", placeholder="Filter your library...", label_visibility="collapsed")
    items = [item for item in library if query.lower() in item.title.lower()]

    if not items:
        st.info("📚 Your library is empty. Click 'Open Folder' or 'Open File' to get started.")
    else:
        for item in items:
            render_card(item, engine)


if __name__ == "__main__":
    main()
