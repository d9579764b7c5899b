"""Floating overlay window and the bridge that feeds it from the asyncio thread."""

import base64
from typing import Any, List

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtGui import QGuiApplication, QPixmap
from PyQt6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QPushButton,
    QTextBrowser,
    QVBoxLayout,
    QWidget,
)

from .overlay import UIEvent

THUMBNAIL_WIDTH = 160


class OverlayBridge(QObject):
    """OverlayListener that re-emits orchestrator events as a Qt signal.

    ``handle`` is called on the asyncio thread; connected slots on the GUI
    thread receive the event through a queued connection.
    """

    event_received = pyqtSignal(object, object)
    settings_requested = pyqtSignal()

    def handle(self, event: UIEvent, payload: Any = None) -> None:
        if event == UIEvent.SETTINGS_REQUESTED:
            self.settings_requested.emit()
        self.event_received.emit(event, payload)


class OverlayWindow(QWidget):
    """Frameless always-on-top panel showing the transcript, the answer and follow-up buttons."""

    button_clicked = pyqtSignal(str)
    copy_requested = pyqtSignal()
    close_requested = pyqtSignal()

    def __init__(self):
        super().__init__()
        self.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.Tool
        )
        self.setWindowTitle("Voice Overlay")
        self.setMinimumWidth(420)
        self.setStyleSheet("""
            QWidget { background-color: #1e1f24; color: #e8e8e8; font-size: 13px; }
            QPushButton { background-color: #2e3038; border: 1px solid #44464f; border-radius: 6px; padding: 4px 10px; }
            QPushButton:hover { background-color: #3a3d47; }
            QTextBrowser { border: none; }
        """)
        self._stream_text = ""
        self._setup_ui()

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        layout.setContentsMargins(12, 10, 12, 12)
        layout.setSpacing(8)

        header = QHBoxLayout()
        self.status_label = QLabel("")
        self.status_label.setStyleSheet("color: #9aa0aa;")
        header.addWidget(self.status_label)
        header.addStretch()
        self.copy_btn = QPushButton("Copy")
        self.copy_btn.clicked.connect(lambda: self.copy_requested.emit())
        header.addWidget(self.copy_btn)
        self.close_btn = QPushButton("✕")
        self.close_btn.setFixedWidth(32)
        self.close_btn.clicked.connect(lambda: self.close_requested.emit())
        header.addWidget(self.close_btn)
        layout.addLayout(header)

        self.thumbnail = QLabel()
        self.thumbnail.hide()
        layout.addWidget(self.thumbnail)

        self.transcript_label = QLabel("")
        self.transcript_label.setWordWrap(True)
        self.transcript_label.setStyleSheet("color: #c7d2fe; font-style: italic;")
        layout.addWidget(self.transcript_label)

        self.response_view = QTextBrowser()
        self.response_view.setOpenExternalLinks(True)
        self.response_view.setMinimumHeight(140)
        layout.addWidget(self.response_view)

        self.buttons_layout = QHBoxLayout()
        self.buttons_layout.setSpacing(6)
        layout.addLayout(self.buttons_layout)

    def _set_buttons(self, labels: List[str]):
        while self.buttons_layout.count():
            item = self.buttons_layout.takeAt(0)
            if item.widget():
                item.widget().deleteLater()
        for label in labels:
            btn = QPushButton(label)
            btn.clicked.connect(lambda _checked=False, text=label: self.button_clicked.emit(text))
            self.buttons_layout.addWidget(btn)
        self.buttons_layout.addStretch()

    def _reveal(self):
        if not self.isVisible():
            screen = QGuiApplication.primaryScreen()
            if screen is not None:
                area = screen.availableGeometry()
                self.adjustSize()
                self.move(area.right() - self.width() - 24, area.top() + 24)
            self.show()
        self.raise_()

    def _clear(self):
        self._stream_text = ""
        self.transcript_label.clear()
        self.response_view.clear()
        self.thumbnail.clear()
        self.thumbnail.hide()
        self._set_buttons([])

    def handle_event(self, event: UIEvent, payload: Any = None):
        """Slot for OverlayBridge.event_received."""
        if event == UIEvent.SESSION_SHOWN:
            self._clear()
            self.status_label.setText("Listening...")
        elif event == UIEvent.OVERLAY_REVEALED:
            self._reveal()
        elif event == UIEvent.SCREENSHOT_AVAILABLE:
            pixmap = QPixmap()
            if pixmap.loadFromData(base64.b64decode(payload)):
                self.thumbnail.setPixmap(pixmap.scaledToWidth(THUMBNAIL_WIDTH, Qt.TransformationMode.SmoothTransformation))
                self.thumbnail.show()
        elif event == UIEvent.TRANSCRIPT_UPDATED:
            self.transcript_label.setText(payload or "")
        elif event == UIEvent.NEW_ROUND_STARTED:
            self.status_label.setText("Listening...")
            self.transcript_label.clear()
            self._set_buttons([])
        elif event == UIEvent.FINALIZING_STARTED:
            self.status_label.setText("Finishing transcript...")
        elif event == UIEvent.BUTTON_THINKING_STARTED:
            self.status_label.setText("Thinking...")
            self.transcript_label.setText(payload or "")
            self._stream_text = ""
            self._set_buttons([])
        elif event == UIEvent.STREAMING_CHUNK:
            self._stream_text = payload or ""
            self.response_view.setMarkdown(self._stream_text)
        elif event == UIEvent.ROUND_COMPLETE:
            self.status_label.setText("")
            self.response_view.setMarkdown(payload["content"])
            self._set_buttons(payload["buttons"])
        elif event == UIEvent.ERROR_OCCURRED:
            self.status_label.setText(payload["title"])
            self.response_view.setMarkdown(f"**{payload['title']}:** {payload['detail']}")
            self._set_buttons(payload["actions"])
            self._reveal()
        elif event == UIEvent.AUTO_COPIED:
            self.status_label.setText("Copied to clipboard")
        elif event == UIEvent.CANCELLED:
            self.status_label.setText("Cancelled")
        elif event == UIEvent.SESSION_HIDDEN:
            self.hide()
            self._clear()
