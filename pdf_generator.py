"""
PDF Report Generator for the Zi Wei chart app.
Uses ReportLab to export the chart text, the expert report and the chat log.
"""

import io
from datetime import datetime
from pathlib import Path

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import PageBreak, Paragraph, Preformatted, SimpleDocTemplate, Spacer, Table, TableStyle

from text_utils import clean_text_for_pdf, format_timestamp, split_paragraphs

# Register preferred Chinese font (local OTF), fallback to CID font.
_FONT_PATH = Path(__file__).resolve().parent / "assets" / "fonts" / "NotoSansCJKsc-Regular.otf"
try:
    if _FONT_PATH.exists():
        pdfmetrics.registerFont(TTFont("NotoSansCJKsc", str(_FONT_PATH)))
        CHINESE_FONT = "NotoSansCJKsc"
    else:
        raise FileNotFoundError(_FONT_PATH)
except Exception:
    try:
        pdfmetrics.registerFont(UnicodeCIDFont('STSong-Light'))
        CHINESE_FONT = 'STSong-Light'
    except Exception:
        # Fallback to Helvetica (won't display Chinese properly, but won't crash)
        CHINESE_FONT = 'Helvetica'

GENDER_LABELS = {"male": "乾造 (男)", "female": "坤造 (女)"}


def create_styles():
    """Create custom paragraph styles for the PDF."""
    styles = getSampleStyleSheet()

    styles.add(ParagraphStyle(
        name='ChineseTitle',
        fontName=CHINESE_FONT,
        fontSize=22,
        leading=28,
        alignment=TA_CENTER,
        textColor=colors.HexColor('#E65100'),
        spaceAfter=16,
    ))
    styles.add(ParagraphStyle(
        name='ChineseSubtitle',
        fontName=CHINESE_FONT,
        fontSize=11,
        leading=16,
        alignment=TA_CENTER,
        textColor=colors.HexColor('#666666'),
        spaceAfter=20,
    ))
    styles.add(ParagraphStyle(
        name='ChineseSectionHeader',
        fontName=CHINESE_FONT,
        fontSize=15,
        leading=20,
        alignment=TA_LEFT,
        textColor=colors.HexColor('#6A1B9A'),
        spaceBefore=16,
        spaceAfter=8,
    ))
    styles.add(ParagraphStyle(
        name='ChineseBody',
        fontName=CHINESE_FONT,
        fontSize=10.5,
        leading=17,
        alignment=TA_JUSTIFY,
        textColor=colors.HexColor('#333333'),
        spaceAfter=8,
    ))
    styles.add(ParagraphStyle(
        name='ChineseTree',
        fontName=CHINESE_FONT,
        fontSize=8,
        leading=11,
        textColor=colors.HexColor('#455A64'),
    ))
    styles.add(ParagraphStyle(
        name='ChineseInfo',
        fontName=CHINESE_FONT,
        fontSize=9,
        leading=13,
        textColor=colors.HexColor('#757575'),
        spaceAfter=4,
    ))
    return styles


def _append_markdown(story, styles, text: str) -> None:
    for is_header, para in split_paragraphs(clean_text_for_pdf(text)):
        style = styles['ChineseSectionHeader'] if is_header else styles['ChineseBody']
        story.append(Paragraph(para, style))


def generate_report_pdf(
    chart_text: str,
    expert_report: str,
    birth,
    chat_log: list = None,
    generated_at: datetime = None,
) -> bytes:
    """
    Generate a PDF report for the current chart.

    Args:
        chart_text: Canonical tree text of the chart.
        expert_report: Expert analysis markdown (may be empty).
        birth: BirthInput the chart was computed from.
        chat_log: Optional list of ChatMessage.
        generated_at: Timestamp printed under the title (defaults to now).

    Returns:
        PDF file as bytes
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=2*cm,
        leftMargin=2*cm,
        topMargin=2*cm,
        bottomMargin=2*cm,
    )
    styles = create_styles()
    story = []

    generated_at = generated_at or datetime.now()
    story.append(Paragraph("紫微斗数命盘分析报告", styles['ChineseTitle']))
    story.append(Paragraph(f"生成时间：{generated_at.strftime('%Y年%m月%d日 %H:%M')}", styles['ChineseSubtitle']))

    # ========== Birth Info ==========
    story.append(Paragraph("基本信息", styles['ChineseSectionHeader']))
    info_table = Table([
        ["性别", GENDER_LABELS.get(birth.gender, birth.gender)],
        ["公历日期", birth.solar_date.isoformat()],
        ["出生时间", birth.time],
    ], colWidths=[3*cm, 12*cm])
    info_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (-1, -1), CHINESE_FONT),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (0, -1), colors.HexColor('#666666')),
        ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ('TOPPADDING', (0, 0), (-1, -1), 6),
    ]))
    story.append(info_table)

    # ========== Chart Text ==========
    story.append(Paragraph("命盘结构化文本 (文墨标准)", styles['ChineseSectionHeader']))
    story.append(Preformatted(chart_text, styles['ChineseTree']))

    # ========== Expert Report ==========
    if expert_report:
        story.append(PageBreak())
        story.append(Paragraph("专家深度分析", styles['ChineseSectionHeader']))
        _append_markdown(story, styles, expert_report)

    # ========== Chat Log ==========
    if chat_log:
        story.append(PageBreak())
        story.append(Paragraph("命理咨询记录", styles['ChineseSectionHeader']))
        for msg in chat_log:
            speaker = "问" if msg.role == "user" else "答"
            story.append(Paragraph(f"【{speaker}】 {format_timestamp(msg.timestamp)}", styles['ChineseInfo']))
            _append_markdown(story, styles, msg.content)
            story.append(Spacer(1, 6))

    story.append(Spacer(1, 24))
    story.append(Paragraph("— 以上分析基于术数理论，仅供国学研究及娱乐参考 —", styles['ChineseSubtitle']))

    doc.build(story)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    return pdf_bytes
