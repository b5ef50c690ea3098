"""
CustomTkinter-based Status Panel
================================
Status, brightness offset slider and app actions
"""

import logging
import threading
import webbrowser
from typing import Callable, Dict, Optional

import customtkinter as ctk
from PIL import ImageTk

from .icon import create_icon
from ..topology import OFFSET_MAX, OFFSET_MIN, clamp_offset

logger = logging.getLogger(__name__)


class SyncPanelCTk:
    """
    Small always-available window replacing a status bar menu.

    All widget access happens on the Tk thread; public setters may be called
    from any thread and are marshalled with ``after(0, ...)``.
    """

    COLORS = {
        'accent': '#FFB000',
        'accent_hover': '#FFC233',
        'bg': '#1a1a1a',
        'bg_secondary': '#2d2d2d',
        'text': '#ffffff',
        'text_dim': '#888888',
        'active': '#4caf50',
        'inactive': '#888888',
    }

    STARTING_TEXT = "Starting"

    def __init__(
        self,
        version: str,
        offset: float = 0.0,
        theme: str = "dark",
        releases_url: str = "",
    ):
        """Initialize the panel (the window is created by start())."""
        self.version = version
        self.theme = theme
        self.releases_url = releases_url

        self._root: Optional[ctk.CTk] = None
        self._callbacks: Dict[str, Callable] = {}
        self._status_text = self.STARTING_TEXT
        self._offset = clamp_offset(offset)

        self._status_label = None
        self._offset_slider = None
        self._offset_label = None
        self._icon_photos = []

        # Thread management
        self._tk_thread: Optional[threading.Thread] = None
        self._running = False
        self._initialized = threading.Event()

        self._slider_debounce_timer = None
        self._slider_debounce_delay = 150  # ms
        self._updating_from_code = False  # Prevents callback loops when setting the slider

    def _create_window(self):
        """Create the CustomTkinter window."""
        ctk.set_appearance_mode(self.theme)
        ctk.set_default_color_theme("blue")

        self._root = ctk.CTk(className='brightness-sync')
        self._root.title("Brightness Sync")
        self._root.resizable(False, False)
        self._root.protocol("WM_DELETE_WINDOW", self._on_window_close)
        self._set_window_icon()

        frame = ctk.CTkFrame(self._root, fg_color=self.COLORS['bg'], corner_radius=0)
        frame.pack(fill="both", expand=True)

        self._status_label = ctk.CTkLabel(
            frame,
            text=self._status_text,
            font=ctk.CTkFont(size=14, weight="bold"),
            text_color=self._status_color(self._status_text),
        )
        self._status_label.pack(anchor="w", padx=16, pady=(14, 8))

        header = ctk.CTkFrame(frame, fg_color="transparent")
        header.pack(fill="x", padx=16)
        ctk.CTkLabel(header, text="Brightness Offset:", text_color=self.COLORS['text']).pack(side="left")
        self._offset_label = ctk.CTkLabel(header, text=self._format_offset(self._offset),
                                          text_color=self.COLORS['text_dim'])
        self._offset_label.pack(side="right")

        self._offset_slider = ctk.CTkSlider(
            frame,
            from_=OFFSET_MIN,
            to=OFFSET_MAX,
            number_of_steps=100,
            width=220,
            button_color=self.COLORS['accent'],
            button_hover_color=self.COLORS['accent_hover'],
            progress_color=self.COLORS['accent'],
            command=self._on_offset_slider,
        )
        self._offset_slider.set(self._offset)
        self._offset_slider.pack(padx=16, pady=(4, 14))

        ctk.CTkLabel(frame, text=f"v{self.version}", text_color=self.COLORS['text_dim']).pack(anchor="w", padx=16)

        buttons = ctk.CTkFrame(frame, fg_color="transparent")
        buttons.pack(fill="x", padx=16, pady=(6, 14))
        for text, command in (
            ("Check For Updates", self._on_check_updates),
            ("Copy Diagnostics", self._on_copy_diagnostics),
            ("Quit", self._on_quit),
        ):
            ctk.CTkButton(
                buttons,
                text=text,
                width=70,
                fg_color=self.COLORS['bg_secondary'],
                hover_color=self.COLORS['accent'],
                command=command,
            ).pack(side="left", expand=True, fill="x", padx=2)

        self._root.bind("<Control-c>", lambda e: self._on_copy_diagnostics())
        self._initialized.set()

    def _set_window_icon(self):
        """Set the window icon from the generated artwork."""
        try:
            self._icon_photos = [ImageTk.PhotoImage(create_icon(size)) for size in (16, 32, 64)]
            self._root.iconphoto(True, *self._icon_photos)
        except Exception as e:
            logger.debug(f"Could not set window icon: {e}")

    @staticmethod
    def _format_offset(offset: float) -> str:
        return f"{offset:+.2f}"

    def _status_color(self, text: str) -> str:
        if text == "Active":
            return self.COLORS['active']
        return self.COLORS['inactive']

    # Widget events (Tk thread)

    def _on_offset_slider(self, value: float):
        if self._updating_from_code:
            return
        self._offset = clamp_offset(value)
        if self._offset_label is not None:
            self._offset_label.configure(text=self._format_offset(self._offset))
        self._debounced_offset_callback(self._offset)

    def _debounced_offset_callback(self, value: float):
        """Only report the slider value once it stops moving."""
        if self._slider_debounce_timer is not None:
            self._root.after_cancel(self._slider_debounce_timer)

        def invoke():
            self._slider_debounce_timer = None
            self._invoke_callback('offset_change', value)

        self._slider_debounce_timer = self._root.after(self._slider_debounce_delay, invoke)

    def _on_check_updates(self):
        if not self.releases_url:
            return
        try:
            webbrowser.open(self.releases_url)
        except webbrowser.Error as e:
            logger.warning(f"Could not open browser: {e}")

    def _on_copy_diagnostics(self):
        self._invoke_callback('copy_diagnostics')

    def _on_quit(self):
        self._invoke_callback('quit')

    def _on_window_close(self):
        # Closing the window quits, there is no tray to hide into
        self._on_quit()

    def _invoke_callback(self, name: str, *args):
        if name in self._callbacks:
            try:
                self._callbacks[name](*args)
            except Exception as e:
                logger.error(f"Callback error ({name}): {e}")

    # Public API

    def start(self):
        """Start the panel in a background thread."""
        if self._running:
            return
        self._running = True
        self._tk_thread = threading.Thread(target=self._run_mainloop, name="gui", daemon=True)
        self._tk_thread.start()
        self._initialized.wait(timeout=5)
        logger.info("Status panel started")

    def _run_mainloop(self):
        self._create_window()
        self._root.mainloop()

    def stop(self):
        self._running = False
        if self._root:
            try:
                self._root.after(0, self._force_quit)
            except RuntimeError:
                pass  # Tk already gone
            if self._tk_thread and self._tk_thread is not threading.current_thread():
                self._tk_thread.join(timeout=2)

    def _force_quit(self):
        """Force quit from the tkinter thread."""
        root, self._root = self._root, None
        if root is not None:
            root.quit()
            root.destroy()

    def set_callback(self, name: str, callback: Callable):
        self._callbacks[name] = callback

    @property
    def status_text(self) -> str:
        return self._status_text

    def set_status(self, text: str):
        """Show the sync status (thread-safe)."""
        self._status_text = text
        if not self._root:
            return

        def update():
            if self._status_label is not None:
                self._status_label.configure(text=text, text_color=self._status_color(text))

        self._root.after(0, update)

    def set_offset(self, offset: float):
        """Move the slider without reporting it back (thread-safe)."""
        self._offset = clamp_offset(offset)
        if not self._root:
            return

        def update():
            self._updating_from_code = True
            try:
                if self._offset_slider is not None:
                    self._offset_slider.set(self._offset)
                if self._offset_label is not None:
                    self._offset_label.configure(text=self._format_offset(self._offset))
            finally:
                self._updating_from_code = False

        self._root.after(0, update)

    def copy_to_clipboard(self, text: str):
        """Replace the clipboard contents (thread-safe)."""
        if not self._root:
            return

        def update():
            self._root.clipboard_clear()
            self._root.clipboard_append(text)
            logger.info("Diagnostics copied to clipboard")

        self._root.after(0, update)
