from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload
from werkzeug.utils import secure_filename
from pathlib import Path
from datetime import datetime
import logging
import os

logger = logging.getLogger(__name__)

# Define the required scope
SCOPES = ["https://www.googleapis.com/auth/drive"]


class DriveIntegration:
    """Stores rental listing photos in the shared rental-images Drive folder."""

    def __init__(self, business_email: str, folder_id: str, service=None):
        self.business_email = business_email
        self.folder_id = folder_id
        self.service = service or self._authorize()

    @staticmethod
    def _find_api_key() -> str:
        """
        Since Credentials.from_service_acccount_file() takes file path, find the file path to either the environment variable in prod or local dev file.
        """
        api_key_path = os.getenv('SERVICE_ACCOUNT_FILE')
        # If none, then get local development key
        if not api_key_path:
            api_key_path = Path("./anacarlita/booking/service-account.json")
        return api_key_path

    def _authorize(self):
        creds = service_account.Credentials.from_service_account_file(
            self._find_api_key(),
            scopes=SCOPES,
            subject=self.business_email  # Impersonating the business email
        )
        return build("drive", "v3", credentials=creds)

    def upload_image(self, uploaded_file, user_id: str) -> str:
        """
        Uploads one image and makes it readable by anyone with the link, since listing pages show it publicly.

        Returns: the public URL of the image
        Raises: googleapiclient.errors.HttpError if the upload fails
        """
        timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        safe_name = secure_filename(uploaded_file.filename) or "image"
        file_metadata = {
            "name": f"{timestamp}_{secure_filename(user_id)}_{safe_name}",
            "parents": [self.folder_id]
        }

        # In-memory stream upload
        media = MediaIoBaseUpload(uploaded_file.stream, mimetype=uploaded_file.mimetype)

        uploaded = self.service.files().create(
            body=file_metadata,
            media_body=media,
            fields="id",
            supportsAllDrives=True  # Must include to access shared drives
        ).execute()

        file_id = uploaded.get("id")
        self.service.permissions().create(
            fileId=file_id,
            body={"type": "anyone", "role": "reader"},
            supportsAllDrives=True
        ).execute()
        logger.info(f"Uploaded listing image {file_id} for user {user_id}")
        return f"https://drive.google.com/uc?export=view&id={file_id}"

    def upload_images(self, uploaded_files, user_id: str) -> list:
        return [self.upload_image(uploaded_file, user_id) for uploaded_file in uploaded_files]
