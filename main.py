# main.py
# Malaria pill reminder (KivyMD) - encrypted registry log + background reminder service
#
# - Run normally:            python main.py
#
# Buildozer notes (in buildozer.spec):
#   requirements = python3,kivy,kivymd,pyjnius,cryptography
#   services = PillReminder:service/pill_service.py
#   android.permissions = POST_NOTIFICATIONS,FOREGROUND_SERVICE,WAKE_LOCK
#
# The today widget writes its answer to the shared defaults file; the app and
# the service both apply it on their next refresh.

from datetime import date
from typing import Optional

from kivy.lang import Builder
from kivy.clock import Clock
from kivy.core.window import Window
from kivy.uix.widget import Widget
from kivy.metrics import dp
from kivy.graphics import Color, Line, Ellipse, RoundedRectangle
from kivy.properties import NumericProperty, ListProperty, StringProperty
from kivy.utils import platform as _kivy_platform

from kivymd.app import MDApp
from kivymd.uix.dialog import MDDialog
from kivymd.uix.button import MDFlatButton, MDRaisedButton
from kivymd.uix.list import TwoLineIconListItem, IconLeftWidget
from kivymd.uix.textfield import MDTextField
from kivymd.uix.boxlayout import MDBoxLayout

try:
    from jnius import autoclass
except Exception:
    autoclass = None

import app_config
from app_log import RING, clear_log, logger
from medicine_db import MedicineDB, get_or_create_key
from pill_stats import PillStats
from registries import FutureEntryError, PeriodStatus, RegistriesManager, fmt_day, parse_hm
from today_widget import SharedDefaults, TodayWidget, consume_widget_answer

if _kivy_platform != "android" and hasattr(Window, "size"):
    Window.size = (420, 760)

STATUS_COLORS = {
    PeriodStatus.TAKEN: [0.30, 0.78, 0.47, 1],
    PeriodStatus.NOT_TAKEN: [0.92, 0.33, 0.33, 1],
    PeriodStatus.NO_DATA: [0.55, 0.58, 0.62, 1],
}
STATUS_TEXT = {
    PeriodStatus.TAKEN: "Taken this period",
    PeriodStatus.NOT_TAKEN: "Not taken this period",
    PeriodStatus.NO_DATA: "No data for this period",
}


# -------------------------
# Widgets
# -------------------------
class GlassCard(Widget):
    radius = NumericProperty(dp(22))

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.bind(pos=self._redraw, size=self._redraw)

    def _redraw(self, *_):
        self.canvas.clear()
        x, y = self.pos
        w, h = self.size
        r = float(self.radius)
        with self.canvas:
            Color(1, 1, 1, 0.06)
            RoundedRectangle(pos=(x, y), size=(w, h), radius=[r])
            Color(1, 1, 1, 0.12)
            Line(rounded_rectangle=[x, y, w, h, r], width=dp(1.2))


class StatusBadge(Widget):
    """Filled ring showing the status of the current dosing period."""
    color = ListProperty(STATUS_COLORS[PeriodStatus.NO_DATA])
    progress = NumericProperty(0.0)  # fraction of the period elapsed

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.bind(pos=self._redraw, size=self._redraw, color=self._redraw, progress=self._redraw)

    def _redraw(self, *_):
        self.canvas.clear()
        d = min(self.width, self.height) * 0.86
        cx, cy = self.center
        with self.canvas:
            Color(self.color[0], self.color[1], self.color[2], 0.18)
            Ellipse(pos=(cx - d / 2, cy - d / 2), size=(d, d))
            Color(*self.color)
            Line(circle=(cx, cy, d / 2, 0, 360 * max(0.02, min(1.0, float(self.progress)))),
                 width=dp(3))


# -------------------------
# Kivy KV (3 screens)
# -------------------------
KV = """
<GlassCard>:
    size_hint: 1, None

<StatusBadge>:
    size_hint: None, None
    size: "64dp", "64dp"

MDScreen:
    MDBoxLayout:
        orientation: "vertical"

        MDTopAppBar:
            title: app.medicine_title
            elevation: 10
            right_action_items: [["refresh", lambda x: app.refresh_all()]]

        ScreenManager:
            id: screen_manager

            MDScreen:
                name: "home"
                MDBoxLayout:
                    orientation: "vertical"
                    padding: "12dp"
                    spacing: "12dp"

                    FloatLayout:
                        size_hint_y: None
                        height: "140dp"
                        GlassCard:
                            pos: self.parent.pos
                            size: self.parent.size
                        MDBoxLayout:
                            orientation: "horizontal"
                            padding: "16dp"
                            spacing: "12dp"
                            pos: self.parent.pos
                            size: self.parent.size

                            StatusBadge:
                                id: badge
                                pos_hint: {"center_y": 0.5}

                            MDBoxLayout:
                                orientation: "vertical"
                                spacing: "4dp"
                                MDLabel:
                                    id: day_label
                                    text: "-"
                                    bold: True
                                    font_style: "H6"
                                MDLabel:
                                    id: date_label
                                    text: "-"
                                    theme_text_color: "Secondary"
                                MDLabel:
                                    id: period_status
                                    text: "-"
                                    theme_text_color: "Secondary"

                    MDLabel:
                        text: "Did you take your pill today?"
                        bold: True
                        halign: "center"
                        size_hint_y: None
                        height: "36dp"

                    MDBoxLayout:
                        size_hint_y: None
                        height: "54dp"
                        spacing: "10dp"
                        MDRaisedButton:
                            text: "No"
                            size_hint_x: 0.5
                            on_release: app.answer_today(False)
                        MDRaisedButton:
                            text: "Yes"
                            size_hint_x: 0.5
                            on_release: app.answer_today(True)

                    MDLabel:
                        id: next_pill
                        text: "Next pill: -"
                        size_hint_y: None
                        height: "28dp"
                    MDLabel:
                        id: streak
                        text: "Streak: -"
                        size_hint_y: None
                        height: "28dp"
                    MDLabel:
                        id: adherence
                        text: "Adherence: -"
                        size_hint_y: None
                        height: "28dp"
                    Widget:

            MDScreen:
                name: "history"
                MDBoxLayout:
                    orientation: "vertical"
                    padding: "12dp"
                    spacing: "12dp"

                    MDLabel:
                        id: hist_count
                        text: "-"
                        bold: True
                        size_hint_y: None
                        height: "28dp"

                    ScrollView:
                        MDList:
                            id: history_list

            MDScreen:
                name: "settings"
                MDBoxLayout:
                    orientation: "vertical"
                    padding: "12dp"
                    spacing: "12dp"

                    MDLabel:
                        text: "Medicines (tap to track)"
                        bold: True
                        size_hint_y: None
                        height: "28dp"

                    ScrollView:
                        size_hint_y: 0.4
                        MDList:
                            id: medicines_list

                    MDRaisedButton:
                        text: "Add Medicine"
                        on_release: app.show_add_medicine_dialog()

                    MDLabel:
                        id: db_status
                        text: "-"
                        theme_text_color: "Secondary"
                        size_hint_y: None
                        height: "28dp"

                    ScrollView:
                        MDLabel:
                            id: debug_log
                            text: ""
                            size_hint_y: None
                            height: self.texture_size[1]

                    MDBoxLayout:
                        spacing: "10dp"
                        size_hint_y: None
                        height: "48dp"
                        MDRaisedButton:
                            text: "Refresh Log"
                            on_release: app.refresh_log()
                        MDRaisedButton:
                            text: "Clear Log"
                            on_release: app.clear_log()

        MDBottomNavigation:
            panel_color: 0.05, 0.08, 0.12, 1
            MDBottomNavigationItem:
                name: "nav_home"
                text: "Today"
                icon: "pill"
                on_tab_press: app.switch_screen("home")
            MDBottomNavigationItem:
                name: "nav_history"
                text: "History"
                icon: "history"
                on_tab_press: app.switch_screen("history")
            MDBottomNavigationItem:
                name: "nav_settings"
                text: "Settings"
                icon: "cog"
                on_tab_press: app.switch_screen("settings")
"""


def start_android_service():
    if _kivy_platform != "android" or autoclass is None:
        return
    try:
        service = autoclass(f"{app_config.ANDROID_PACKAGE}.ServicePillreminder")
        mActivity = autoclass("org.kivy.android.PythonActivity").mActivity
        service.start(mActivity, "")
        logger.info("reminder service started")
    except Exception:
        logger.exception("reminder service start failed")


# -------------------------
# App
# -------------------------
class MalariaReminderApp(MDApp):
    medicine_title = StringProperty("Malaria Reminder")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.db: Optional[MedicineDB] = None
        self.manager: Optional[RegistriesManager] = None
        self.defaults = SharedDefaults()
        self.widget_model = TodayWidget(self.defaults)
        self._dialog: Optional[MDDialog] = None

    def build(self):
        self.title = "Malaria Reminder"
        self.theme_cls.theme_style = "Dark"
        self.theme_cls.primary_palette = "Green"
        return Builder.load_string(KV)

    def on_start(self):
        logger.info(f"app start platform={_kivy_platform} base={app_config.BASE_DIR}")
        self.db = MedicineDB(get_or_create_key())
        self.load_current()
        start_android_service()

        self.root.ids.screen_manager.current = "home"
        Clock.schedule_once(lambda *_: self.sync_widget(), 0.2)
        Clock.schedule_once(lambda *_: self.refresh_all(), 0.4)
        Clock.schedule_interval(lambda *_: self.sync_widget(), 30)
        Clock.schedule_interval(lambda *_: self.refresh_log(silent=True), 20)

    def on_resume(self):
        self.sync_widget()
        self.refresh_all()

    # -------------------------
    # Data
    # -------------------------
    def load_current(self):
        medicine = self.db.get_current() if self.db else None
        if medicine is None:
            self.manager = None
            self.medicine_title = "Malaria Reminder"
            return
        self.manager = RegistriesManager(medicine, db=self.db)
        self.medicine_title = f"{medicine.name} - every {medicine.interval}d"

    def sync_widget(self):
        try:
            self.load_current()
            if not self.manager:
                return
            result = consume_widget_answer(self.defaults, self.manager)
            if result is not None:
                self.refresh_all()
        except Exception:
            logger.exception("widget sync failed")

    def answer_today(self, took: bool, overwrite: bool = False):
        if not self.manager:
            self.show_add_medicine_dialog()
            return
        try:
            result = self.manager.add_registry(date.today(), took, modify_entry=overwrite)
        except FutureEntryError:
            logger.exception("answer rejected")
            return
        except Exception:
            logger.exception("answer failed")
            return
        if not result.added and result.conflict and not overwrite:
            self.confirm_overwrite(date.today(), took)
            return
        self.refresh_all()

    def confirm_overwrite(self, day: date, took: bool):
        def replace(*_):
            self._dialog.dismiss()
            try:
                self.manager.add_registry(day, took, modify_entry=True)
            except Exception:
                logger.exception("overwrite failed")
            self.refresh_all()

        self._dialog = MDDialog(
            title="Entry already logged",
            text=f"This period already has an entry. Replace it with "
                 f"'{'taken' if took else 'not taken'}' on {fmt_day(day)}?",
            buttons=[
                MDFlatButton(text="Keep", on_release=lambda *_: self._dialog.dismiss()),
                MDRaisedButton(text="Replace", on_release=replace),
            ]
        )
        self._dialog.open()

    # -------------------------
    # Navigation / refresh
    # -------------------------
    def switch_screen(self, name: str):
        self.root.ids.screen_manager.current = name
        if name == "home":
            self.refresh_home()
        elif name == "history":
            self.refresh_history()
        elif name == "settings":
            self.refresh_medicines()
            self.refresh_log()

    def refresh_all(self):
        try:
            self.load_current()
        except Exception:
            logger.exception("reload failed")
        self.refresh_home()
        self.refresh_history()
        self.refresh_medicines()
        self.refresh_log(silent=True)

    def refresh_home(self):
        ids = self.root.ids
        ids.day_label.text = self.widget_model.day_label()
        ids.date_label.text = self.widget_model.date_label()
        if not self.manager:
            ids.period_status.text = "Add a medicine in Settings"
            return
        try:
            today = date.today()
            stats = PillStats(self.manager)
            status = self.manager.period_status(today)
            ids.period_status.text = STATUS_TEXT[status]
            ids.badge.color = STATUS_COLORS[status]

            nxt = stats.next_pill_date()
            last = self.manager.last_pill_date()
            if last is not None:
                elapsed = (today - last).days + 1
                ids.badge.progress = elapsed / float(self.manager.medicine.interval)
            ids.next_pill.text = f"Next pill: {fmt_day(nxt) if nxt else 'today'}"
            ids.streak.text = f"Streak: {stats.pill_streak(today)}"

            limits = self.manager.get_limits()
            if limits:
                adherence = stats.pill_adherence(limits[0].date, today)
                ids.adherence.text = f"Adherence: {adherence * 100:.0f}%"
            else:
                ids.adherence.text = "Adherence: -"
        except Exception:
            logger.exception("refresh_home failed")

    def refresh_history(self):
        hl = self.root.ids.history_list
        hl.clear_widgets()
        if not self.manager:
            self.root.ids.hist_count.text = "No medicine tracked"
            return
        try:
            entries = self.manager.get_registries(most_recent_first=True)
            for r in entries:
                item = TwoLineIconListItem(
                    text=f"{r.date.strftime('%A')}  {fmt_day(r.date)}",
                    secondary_text="Taken" if r.took_medicine else "Not taken",
                )
                item.add_widget(IconLeftWidget(icon="check-circle" if r.took_medicine else "close-circle"))
                item.on_release = lambda d=r.date, t=r.took_medicine: self.show_entry_dialog(d, t)
                hl.add_widget(item)
            self.root.ids.hist_count.text = f"{len(entries)} entries"
        except Exception:
            logger.exception("refresh_history failed")

    def refresh_medicines(self):
        if not self.db:
            return
        try:
            ml = self.root.ids.medicines_list
            ml.clear_widgets()
            for med in self.db.get_medicines():
                item = TwoLineIconListItem(
                    text=f"{med.name}{'  (tracking)' if med.is_current else ''}",
                    secondary_text=f"every {med.interval} day(s) at {med.notification_time or '-'}",
                )
                item.add_widget(IconLeftWidget(icon="pill"))
                item.on_release = lambda name=med.name: self.use_medicine(name)
                ml.add_widget(item)
        except Exception:
            logger.exception("refresh_medicines failed")

    def refresh_log(self, silent: bool = False):
        try:
            if not silent:
                logger.info("log refreshed")
            self.root.ids.debug_log.text = RING.text()
            if app_config.DB_PATH.exists():
                kb = app_config.DB_PATH.stat().st_size / 1024.0
                counts = self.db.stats() if self.db else {"medicines": 0, "registries": 0}
                self.root.ids.db_status.text = (f"Encrypted DB: {kb:.1f} KB  •  "
                                                f"{counts['medicines']} medicines, {counts['registries']} entries")
            else:
                self.root.ids.db_status.text = "DB not found"
        except Exception:
            logger.exception("refresh_log failed")

    def clear_log(self):
        try:
            clear_log()
        except OSError:
            logger.exception("clear log failed")
        self.root.ids.debug_log.text = ""
        logger.info("log cleared")

    # -------------------------
    # Dialogs
    # -------------------------
    def show_entry_dialog(self, day: date, took: bool):
        def flip(*_):
            self._dialog.dismiss()
            try:
                self.manager.add_registry(day, not took, modify_entry=True)
            except Exception:
                logger.exception("edit entry failed")
            self.refresh_all()

        def remove(*_):
            self._dialog.dismiss()
            self.manager.remove_entry(day)
            self.refresh_all()

        self._dialog = MDDialog(
            title=fmt_day(day),
            text="Taken" if took else "Not taken",
            buttons=[
                MDFlatButton(text="Delete", on_release=remove),
                MDFlatButton(text="Cancel", on_release=lambda *_: self._dialog.dismiss()),
                MDRaisedButton(text="Mark not taken" if took else "Mark taken", on_release=flip),
            ]
        )
        self._dialog.open()

    def use_medicine(self, name: str):
        try:
            self.db.set_current(name)
            self.load_current()
            self.refresh_all()
        except Exception:
            logger.exception("set current medicine failed")

    def show_add_medicine_dialog(self):
        content = MDBoxLayout(orientation="vertical", spacing="10dp", padding="10dp", size_hint_y=None)
        content.bind(minimum_height=content.setter("height"))

        name = MDTextField(hint_text="Medicine name", helper_text="Required", helper_text_mode="on_error")
        interval = MDTextField(hint_text="Days between pills (1 = daily, 7 = weekly)",
                               text=str(app_config.DEFAULT_INTERVAL_DAYS), input_filter="int")
        notify_at = MDTextField(hint_text="Reminder time (HH:MM)", text=app_config.DEFAULT_NOTIFICATION_TIME)
        for w in (name, interval, notify_at):
            content.add_widget(w)

        def save(*_):
            try:
                if not name.text.strip():
                    name.error = True
                    return
                try:
                    parse_hm(notify_at.text.strip() or app_config.DEFAULT_NOTIFICATION_TIME)
                except ValueError:
                    notify_at.error = True
                    return
                self.db.register_medicine(
                    name.text.strip(),
                    int(interval.text or app_config.DEFAULT_INTERVAL_DAYS),
                    notification_time=notify_at.text.strip() or app_config.DEFAULT_NOTIFICATION_TIME,
                    is_current=True,
                )
                self._dialog.dismiss()
                self.load_current()
                self.refresh_all()
            except ValueError:
                logger.exception("add medicine rejected")
                interval.error = True
            except Exception:
                logger.exception("add medicine failed")

        self._dialog = MDDialog(
            title="Add medicine",
            type="custom",
            content_cls=content,
            buttons=[
                MDFlatButton(text="Cancel", on_release=lambda *_: self._dialog.dismiss()),
                MDRaisedButton(text="Save", on_release=save),
            ]
        )
        self._dialog.open()


# -------------------------
# Entrypoint
# -------------------------
def main():
    MalariaReminderApp().run()


if __name__ == "__main__":
    main()
