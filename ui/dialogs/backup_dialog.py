import sys
from typing import Any, Callable, Dict, Optional
from PySide6 import QtWidgets, QtCore, QtGui

from services.backup_facade import BackupRequestHandler
from workers.backup_worker import BackupTaskWorker


class BackupDialog(QtWidgets.QDialog):
    """
    Database maintenance window for admins:
    backup now (optionally to Google Drive), restore, repair,
    and the automatic backup schedule.
    """
    SCHEDULES = [("Manual only", "manual"), ("Daily (2 AM)", "daily"),
                 ("Weekly (Sunday 2 AM)", "weekly"), ("Monthly (1st, 2 AM)", "monthly")]

    def __init__(self, handler: BackupRequestHandler, parent: Optional[QtWidgets.QWidget] = None):
        super().__init__(parent)
        self.handler = handler
        self.pool = QtCore.QThreadPool.globalInstance()
        self.setWindowTitle("Database Backup")
        self.setFixedSize(460, 560)
        self.init_ui()
        self.apply_style()

    def init_ui(self) -> None:
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(20, 20, 20, 20)

        # --- Header ---
        title = QtWidgets.QLabel("🗄️ Secure Your Data")
        title.setAlignment(QtCore.Qt.AlignCenter)
        title.setStyleSheet("font-size: 20px; font-weight: bold; color: #ffcc00; margin-bottom: 5px;")
        layout.addWidget(title)

        # --- Google Drive ---
        drive_box = QtWidgets.QGroupBox("Google Drive (optional)")
        form = QtWidgets.QFormLayout(drive_box)

        self.client_id_inp = QtWidgets.QLineEdit()
        self.client_secret_inp = QtWidgets.QLineEdit()
        self.client_secret_inp.setEchoMode(QtWidgets.QLineEdit.Password)
        self.refresh_token_inp = QtWidgets.QLineEdit()
        self.refresh_token_inp.setEchoMode(QtWidgets.QLineEdit.Password)
        form.addRow("Client ID", self.client_id_inp)
        form.addRow("Client Secret", self.client_secret_inp)
        form.addRow("Refresh Token", self.refresh_token_inp)

        self.upload_chk = QtWidgets.QCheckBox("Upload backups to Google Drive")
        form.addRow(self.upload_chk)

        btn_auth = QtWidgets.QPushButton("🔑 Get Authorization Link")
        btn_auth.clicked.connect(self.open_drive_auth)
        form.addRow(btn_auth)
        layout.addWidget(drive_box)

        # --- Actions ---
        btn_backup = QtWidgets.QPushButton("🚀 Backup Now")
        btn_backup.setFixedHeight(40)
        btn_backup.setStyleSheet("background: #006600; font-size: 14px;")
        btn_backup.clicked.connect(lambda: self.start_backup())
        layout.addWidget(btn_backup)

        row = QtWidgets.QHBoxLayout()
        btn_backup_to = QtWidgets.QPushButton("💾 Backup To...")
        btn_backup_to.clicked.connect(self.backup_to)
        btn_restore = QtWidgets.QPushButton("♻️ Restore...")
        btn_restore.clicked.connect(self.start_restore)
        btn_repair = QtWidgets.QPushButton("🛠️ Repair")
        btn_repair.clicked.connect(self.start_repair)
        for b in (btn_backup_to, btn_restore, btn_repair):
            b.setFixedHeight(34)
            row.addWidget(b)
        layout.addLayout(row)

        # --- Schedule ---
        sched_row = QtWidgets.QHBoxLayout()
        self.schedule_combo = QtWidgets.QComboBox()
        for label, value in self.SCHEDULES:
            self.schedule_combo.addItem(label, value)
        btn_schedule = QtWidgets.QPushButton("⏰ Apply")
        btn_schedule.clicked.connect(self.apply_schedule)
        sched_row.addWidget(QtWidgets.QLabel("Auto Backup:"))
        sched_row.addWidget(self.schedule_combo, 1)
        sched_row.addWidget(btn_schedule)
        layout.addLayout(sched_row)

        self.status_lbl = QtWidgets.QLabel("")
        self.status_lbl.setWordWrap(True)
        self.status_lbl.setStyleSheet("color: #ccc; font-size: 12px;")
        layout.addWidget(self.status_lbl)

        layout.addStretch()
        btn_close = QtWidgets.QPushButton("Close")
        btn_close.setStyleSheet("background: transparent; color: #666; text-decoration: underline;")
        btn_close.clicked.connect(self.close)
        layout.addWidget(btn_close)

    # --- HELPERS ---

    def drive_credentials(self) -> Optional[Dict[str, str]]:
        """Returns the typed-in credentials, or None if any field is empty."""
        creds = {
            "clientId": self.client_id_inp.text().strip(),
            "clientSecret": self.client_secret_inp.text().strip(),
            "refreshToken": self.refresh_token_inp.text().strip(),
        }
        return creds if all(creds.values()) else None

    def client_credentials(self) -> Optional[Dict[str, str]]:
        """Client id/secret for the consent link, or None to use credentials.json."""
        creds = {
            "clientId": self.client_id_inp.text().strip(),
            "clientSecret": self.client_secret_inp.text().strip(),
        }
        return creds if all(creds.values()) else None

    def run_task(self, busy_text: str, on_done: Callable[[Dict[str, Any]], None],
                 task: Callable[..., Dict[str, Any]], *args: Any) -> None:
        """Runs a handler call in the thread pool and routes the result to on_done."""
        self.status_lbl.setText(busy_text)
        self.setEnabled(False)

        worker = BackupTaskWorker(task, *args)
        worker.signals.finished.connect(lambda result: self._task_done(result, on_done))
        worker.signals.error.connect(lambda msg: self._task_done({"error": msg}, on_done))
        self.pool.start(worker)

    def _task_done(self, result: Dict[str, Any], on_done: Callable[[Dict[str, Any]], None]) -> None:
        self.setEnabled(True)
        self.status_lbl.setText("")
        if "error" in result:
            QtWidgets.QMessageBox.critical(self, "Error", result["error"])
            return
        if result.get("canceled"):
            return
        on_done(result)

    # --- ACTIONS ---

    def start_backup(self, custom_path: Optional[str] = None) -> None:
        upload = self.upload_chk.isChecked()
        creds = self.drive_credentials()
        if upload and not creds:
            QtWidgets.QMessageBox.warning(self, "Google Drive", "Fill in all Google Drive fields to upload.")
            return

        options = {"customPath": custom_path, "uploadToDrive": upload, "driveCredentials": creds}
        self.run_task("Creating backup...", lambda r: self.on_backup_done(r, upload),
                      self.handler.backup_database_enhanced, options)

    def on_backup_done(self, result: Dict[str, Any], upload: bool) -> None:
        if upload and not result.get("driveFileId"):
            # Local backup worked, cloud did not
            QtWidgets.QMessageBox.warning(
                self, "Partial Success",
                "Could not upload to Google Drive (see log for details).\n\n"
                f"HOWEVER: A local backup was saved to:\n{result['path']}"
            )
        elif upload:
            QtWidgets.QMessageBox.information(self, "Success", "✅ Backup saved and uploaded to Google Drive!")
        else:
            QtWidgets.QMessageBox.information(self, "Success", f"✅ Backup saved to:\n{result['path']}")

    def backup_to(self) -> None:
        # File picker must run on the UI thread
        result = self.handler.choose_backup_path()
        if "error" in result:
            QtWidgets.QMessageBox.critical(self, "Error", result["error"])
        elif result.get("success"):
            self.start_backup(result["filePath"])

    def start_restore(self) -> None:
        confirm = QtWidgets.QMessageBox.question(
            self, "Restore Database",
            "Restoring replaces ALL current data with the backup's data. Continue?"
        )
        if confirm != QtWidgets.QMessageBox.Yes:
            return

        # File picker must run on the UI thread
        result = self.handler.choose_restore_file()
        if "error" in result:
            QtWidgets.QMessageBox.critical(self, "Error", result["error"])
        elif result.get("success"):
            self.run_task("Restoring database...", self.on_restore_done,
                          self.handler.restore_database, result["filePath"])

    def on_restore_done(self, result: Dict[str, Any]) -> None:
        answer = QtWidgets.QMessageBox.question(
            self, "Restore Complete",
            "The database was restored. The application must restart to load it.\n\nRestart now?"
        )
        if answer == QtWidgets.QMessageBox.Yes:
            QtCore.QProcess.startDetached(sys.executable, sys.argv)
            QtWidgets.QApplication.instance().quit()

    def start_repair(self) -> None:
        self.run_task("Repairing database...",
                      lambda r: QtWidgets.QMessageBox.information(self, "Success", "✅ Database repaired."),
                      self.handler.repair_database)

    def apply_schedule(self) -> None:
        schedule = self.schedule_combo.currentData()
        creds = self.drive_credentials() if self.upload_chk.isChecked() else None
        self.run_task("Updating schedule...",
                      lambda r: self.status_lbl.setText(f"Auto backup: {self.schedule_combo.currentText()}"),
                      self.handler.setup_auto_backup, schedule, creds)

    def open_drive_auth(self) -> None:
        result = self.handler.google_drive_auth(self.client_credentials())
        if "error" in result:
            QtWidgets.QMessageBox.critical(self, "Google Drive", result["error"])
            return
        QtGui.QDesktopServices.openUrl(QtCore.QUrl(result["authUrl"]))

        code, ok = QtWidgets.QInputDialog.getText(
            self, "Google Drive",
            "After allowing access, paste the code or the full address\n"
            "the browser was sent to (starts with http://localhost):"
        )
        if ok and code.strip():
            self.run_task("Authorizing Google Drive...", self.on_drive_auth_done,
                          self.handler.complete_drive_auth, code.strip())

    def on_drive_auth_done(self, result: Dict[str, Any]) -> None:
        creds = result["driveCredentials"]
        self.client_id_inp.setText(creds["clientId"])
        self.client_secret_inp.setText(creds["clientSecret"])
        self.refresh_token_inp.setText(creds["refreshToken"])
        QtWidgets.QMessageBox.information(self, "Google Drive", "✅ Google Drive connected.")

    def apply_style(self) -> None:
        self.setStyleSheet("""
            QDialog { background: #1a1a1a; }
            QGroupBox { color: #ffcc00; border: 1px solid #444; border-radius: 6px; margin-top: 10px; padding: 8px; }
            QLabel, QCheckBox { color: white; font-family: 'Segoe UI'; }
            QLineEdit, QComboBox { padding: 6px; border: 1px solid #444; background: #111; color: white; border-radius: 4px; }
            QPushButton { color: white; font-weight: bold; border-radius: 5px; background: #333; padding: 6px; }
            QPushButton:hover { background: #ffcc00; color: black; }
        """)
