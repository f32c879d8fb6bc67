import os
import shutil
import tempfile
import unittest

from PIL import Image

from takeoffs.preview import generate_pdf_preview, preview_path_for


class PdfPreviewTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir, True)

    def _write_pdf(self, name: str, size=(1700, 2200)) -> str:
        path = os.path.join(self.tmpdir, name)
        Image.new("RGB", size, "white").save(path, format="PDF", resolution=200.0)
        return path

    def test_preview_path_sits_beside_source(self):
        self.assertEqual(
            preview_path_for("/tmp/uploads/123-plans.pdf"),
            "/tmp/uploads/123-plans-preview.png",
        )

    def test_renders_first_page_within_bounds(self):
        pdf_path = self._write_pdf("plans.pdf")
        output = generate_pdf_preview(pdf_path)
        self.assertEqual(output, os.path.join(self.tmpdir, "plans-preview.png"))
        with Image.open(output) as img:
            self.assertEqual(img.format, "PNG")
            self.assertLessEqual(img.width, 800)
            self.assertLessEqual(img.height, 600)
            # Portrait pages stay portrait.
            self.assertGreater(img.height, img.width)

    def test_malformed_pdf_returns_none(self):
        path = os.path.join(self.tmpdir, "broken.pdf")
        with open(path, "wb") as f:
            f.write(b"%PDF-1.4 this is not really a pdf")
        self.assertIsNone(generate_pdf_preview(path))
        self.assertFalse(os.path.exists(preview_path_for(path)))

    def test_missing_file_returns_none(self):
        self.assertIsNone(generate_pdf_preview(os.path.join(self.tmpdir, "nope.pdf")))


if __name__ == "__main__":
    unittest.main()
