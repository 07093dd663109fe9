import logging
from io import BytesIO

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError
from reportlab.graphics import renderPDF
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)


def verification_reference(request_id):
    """Short reference printed on the certificate and stored in metadata."""
    return f'MS:{request_id}'


class CertificateRenderer:
    """Render the signature certificate page with reportlab."""

    PAGE_WIDTH, PAGE_HEIGHT = letter
    MARGIN = 54
    LINE_HEIGHT = 14
    QR_SIZE = 90

    def render(self, signing_request, slots, signature_set_hash) -> bytes:
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=letter)
        pdf.setTitle(f'Signature certificate {signing_request.id}')

        y = self.PAGE_HEIGHT - self.MARGIN
        pdf.setFillColor(HexColor('#1a1a1a'))
        pdf.setFont('Helvetica-Bold', 16)
        pdf.drawString(self.MARGIN, y, 'Signature Certificate')
        self._draw_qr(pdf, verification_reference(signing_request.id))
        y -= self.LINE_HEIGHT * 2

        completed_at = signing_request.completed_at
        rows = [
            ('Request', str(signing_request.id)),
            ('Document', signing_request.document_name or '-'),
            ('Document SHA256', signing_request.document_hash),
            ('Initiator', signing_request.initiator_id),
            ('Signing type', signing_request.signing_type),
            ('Completed at', completed_at.isoformat() if completed_at else '-'),
            ('Signature set', signature_set_hash),
            ('Verification', verification_reference(signing_request.id)),
        ]
        for label, value in rows:
            y = self._draw_row(pdf, y, label, value)

        y -= self.LINE_HEIGHT
        pdf.setFont('Helvetica-Bold', 12)
        pdf.drawString(self.MARGIN, y, f'Signers ({len(slots)})')
        y -= self.LINE_HEIGHT * 1.5

        for slot in slots:
            if y < self.MARGIN + self.LINE_HEIGHT * 4:
                pdf.showPage()
                y = self.PAGE_HEIGHT - self.MARGIN
            y = self._draw_signer(pdf, y, slot)

        pdf.save()
        buffer.seek(0)
        return buffer.getvalue()

    def qr_drawing(self, value):
        """Scannable QR code of a verification reference, scaled to QR_SIZE."""
        widget = QrCodeWidget(value)
        x1, y1, x2, y2 = widget.getBounds()
        drawing = Drawing(
            self.QR_SIZE, self.QR_SIZE,
            transform=[self.QR_SIZE / (x2 - x1), 0, 0, self.QR_SIZE / (y2 - y1), 0, 0]
        )
        drawing.add(widget)
        return drawing

    def _draw_qr(self, pdf, value):
        x = self.PAGE_WIDTH - self.MARGIN - self.QR_SIZE
        y = self.PAGE_HEIGHT - self.MARGIN - self.QR_SIZE

        pdf.saveState()
        renderPDF.draw(self.qr_drawing(value), pdf, x, y)
        pdf.setFillColor(HexColor('#1a1a99'))
        pdf.setFont('Helvetica', 7)
        pdf.drawString(x + 24, y - 8, 'Scan to Verify')
        pdf.restoreState()

    def _draw_row(self, pdf, y, label, value):
        pdf.setFont('Helvetica-Bold', 9)
        pdf.drawString(self.MARGIN, y, f'{label}:')
        pdf.setFont('Courier', 8)
        pdf.drawString(self.MARGIN + 100, y, str(value))
        return y - self.LINE_HEIGHT

    def _draw_signer(self, pdf, y, slot):
        pdf.setFont('Helvetica-Bold', 9)
        signed_at = slot.signed_at.isoformat() if slot.signed_at else '-'
        pdf.drawString(self.MARGIN, y, f'#{slot.order + 1}  signed at {signed_at}')
        y -= self.LINE_HEIGHT

        pdf.setFont('Courier', 7)
        for chunk in self._wrap(f'signer {slot.signer_id}'):
            pdf.drawString(self.MARGIN + 12, y, chunk)
            y -= self.LINE_HEIGHT * 0.8
        for chunk in self._wrap(f'sig    {slot.signature or ""}'):
            pdf.drawString(self.MARGIN + 12, y, chunk)
            y -= self.LINE_HEIGHT * 0.8
        return y - self.LINE_HEIGHT * 0.5

    @staticmethod
    def _wrap(text, width=96):
        return [text[i:i + width] for i in range(0, len(text), width)] or ['']


class ArtifactBuilder:
    """
    Build the final signed artifact for a completed request.

    The original pages are copied when the stored document is a PDF, and a
    certificate page listing every signature is appended. Without a readable
    PDF the certificate is the whole artifact.
    """

    def __init__(self):
        self.renderer = CertificateRenderer()

    def build(self, signing_request, slots, signature_set_hash) -> bytes:
        writer = PdfWriter()

        for page in self._original_pages(signing_request):
            writer.add_page(page)

        certificate = PdfReader(BytesIO(
            self.renderer.render(signing_request, slots, signature_set_hash)
        ))
        for page in certificate.pages:
            writer.add_page(page)

        writer.add_metadata({
            '/Title': f'Signed {signing_request.document_name or signing_request.id}',
            '/MultisignRequestId': str(signing_request.id),
            '/MultisignDocumentHash': signing_request.document_hash,
            '/MultisignSignatureSet': signature_set_hash,
            '/MultisignReference': verification_reference(signing_request.id),
        })

        output_buffer = BytesIO()
        writer.write(output_buffer)
        output_buffer.seek(0)
        return output_buffer.getvalue()

    @staticmethod
    def _original_pages(signing_request):
        if not signing_request.document:
            return []

        signing_request.document.open('rb')
        try:
            data = signing_request.document.read()
        finally:
            signing_request.document.close()

        if not data.startswith(b'%PDF'):
            return []
        try:
            return list(PdfReader(BytesIO(data)).pages)
        except PdfReadError as e:
            logger.warning(f"Original document of {signing_request.id} is not a readable PDF: {e}")
            return []


# Singleton instance
_artifact_builder = None


def get_artifact_builder() -> ArtifactBuilder:
    """Get singleton instance of the artifact builder."""
    global _artifact_builder
    if _artifact_builder is None:
        _artifact_builder = ArtifactBuilder()
    return _artifact_builder
