import unittest
from unittest import mock
import io
import os
import sys
from werkzeug.datastructures import FileStorage
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from anacarlita.booking.drive_integration import DriveIntegration


class DriveIntegrationTest(unittest.TestCase):
    def setUp(self):
        self.service = mock.MagicMock()
        self.service.files().create().execute.return_value = {'id': 'file-1'}
        self.drive = DriveIntegration('noreply@anacarlita.com', 'folder-1', service=self.service)

    def test_upload_image_is_public(self):
        upload = FileStorage(stream=io.BytesIO(b'fake image bytes'), filename='../my tent.png', content_type='image/png')

        url = self.drive.upload_image(upload, 'uid-1')

        self.assertEqual(url, 'https://drive.google.com/uc?export=view&id=file-1')
        metadata = self.service.files().create.call_args.kwargs['body']
        self.assertEqual(metadata['parents'], ['folder-1'])
        self.assertTrue(metadata['name'].endswith('_uid-1_my_tent.png'))
        self.service.permissions().create.assert_called_with(fileId='file-1', body={'type': 'anyone', 'role': 'reader'},
                                                             supportsAllDrives=True)

    def test_upload_images(self):
        uploads = [FileStorage(stream=io.BytesIO(b'a'), filename=f'{i}.png', content_type='image/png') for i in range(2)]
        self.assertEqual(len(self.drive.upload_images(uploads, 'uid-1')), 2)


if __name__ == '__main__':
    unittest.main()
