"""
Tests for the XML estimate reader.

Verifies:
- The estimate node is found under a namespaced GGE root or used as the root
- Nested sections and positions flatten in document order with their levels
- Summary sections, repeated SysIDs and coefficient lines are skipped
- BOM-prefixed, UTF-16 and Windows-1251 exports decode
- Broken or empty documents raise WorkbookFormatError
"""

import codecs
import xml.etree.ElementTree as ET
from decimal import Decimal

import pytest

from estimator.app.domains.estimate_import.errors import WorkbookFormatError
from estimator.app.domains.estimate_import.reader import RowKind
from estimator.app.domains.estimate_import.xml_reader import (
    XmlEstimateReader,
    decode_xml,
    find_estimate_node,
    local_name,
    looks_like_xml,
    node_value,
)

GGE_ESTIMATE = """<?xml version="1.0" encoding="UTF-8"?>
<GGE xmlns="http://www.gge.ru/2001/Schema">
  <Properties Name="Локальная смета № 02-01"/>
  <Estimate>
    <Sections>
      <Section Number="1" Name="Земляные работы">
        <Position SysID="11" Code="ФЕР01-01-003-01" Name="Разработка грунта экскаватором">
          <Unit Value="1000 м3"/>
          <Quantity Value="2,5"/>
          <Price Value="1520.40"/>
          <Resources>
            <Mat Code="01.7.15.03-0042" Name="Болты"/>
          </Resources>
        </Position>
        <Section Number="1.1" Name="Крепление">
          <Position SysID="12" Code="ФССЦ-01.7.15.03-0042" Name="Болты строительные"
                    Unit="т" Quantity="0.1" Price="9000"/>
          <Position SysID="12" Code="ФССЦ-01.7.15.03-0042" Name="Болты строительные"
                    Unit="т" Quantity="0.1" Price="9000"/>
          <Position SysID="13" DBFlags="TechK" Name="Коэффициент к позиции 2"/>
        </Section>
        <Position SysID="14" Name="Обратная засыпка" Unit="м3" Quantity="4">
          <Cost Value="1000"/>
        </Position>
        <Itog Name="Итого по разделу 1"/>
      </Section>
      <Section Number="2" Name="Кровля">
        <Position SysID="15" Code="91.05.01-017" Name="Кран на автомобильном ходу"
                  Unit="маш.-ч" Quantity="4" Price="1200"/>
      </Section>
      <Section Name="Сводка затрат">
        <Position SysID="16" Name="Всего по смете" Quantity="1" Price="99999"/>
      </Section>
    </Sections>
  </Estimate>
</GGE>
"""

PLAIN_ESTIMATE = """<LocalEstimate Name="Смета на кровлю">
  <Razdel Number="3">
    <Poz Name="Устройство кровли" Measure="м2" Quantity="120"/>
    <Poz Quantity="1"/>
  </Razdel>
</LocalEstimate>
"""


@pytest.fixture
def reader():
    return XmlEstimateReader()


class TestXmlHelpers:
    def test_local_name(self):
        assert local_name("{http://www.gge.ru/2001/Schema}Position") == "position"
        assert local_name("Razdel") == "razdel"

    @pytest.mark.parametrize(
        "file_name,data,expected",
        [
            ("estimate.xml", b"", True),
            ("estimate.GSFX", b"PK\x03\x04", True),
            ("upload.bin", codecs.BOM_UTF8 + b"  \n<GGE/>", True),
            ("estimate.xlsx", b"PK\x03\x04", False),
            ("estimate", b"Smeta", False),
        ],
    )
    def test_looks_like_xml(self, file_name, data, expected):
        assert looks_like_xml(file_name, data) is expected

    def test_node_value_prefers_attribute_then_child(self):
        node = ET.fromstring(
            '<Position name="Грунт"><Price Value="12.5"/><Unit>м3</Unit></Position>'
        )
        assert node_value(node, ("Name", "Caption")) == "Грунт"
        assert node_value(node, ("Price",)) == "12.5"
        assert node_value(node, ("Measure", "Unit")) == "м3"
        assert node_value(node, ("Code",)) == ""

    def test_find_estimate_node(self):
        root = ET.fromstring(
            '<GGE xmlns="http://www.gge.ru/2001/Schema"><Header/><Estimate/></GGE>'
        )
        assert local_name(find_estimate_node(root).tag) == "estimate"
        bare = ET.fromstring("<Export><Section/></Export>")
        assert find_estimate_node(bare) is bare


class TestDecodeXml:
    def test_utf8_bom_and_declaration_removed(self):
        data = codecs.BOM_UTF8 + '<?xml version="1.0" encoding="utf-8"?><a>Смета</a>'.encode()
        assert decode_xml(data) == "<a>Смета</a>"

    def test_utf16(self):
        data = '<?xml version="1.0" encoding="UTF-16"?><a>Смета</a>'.encode("utf-16")
        assert decode_xml(data) == "<a>Смета</a>"

    def test_declared_windows_1251(self):
        data = '<?xml version="1.0" encoding="windows-1251"?><a>Смета</a>'.encode("cp1251")
        assert decode_xml(data) == "<a>Смета</a>"

    def test_undeclared_windows_1251_falls_back(self):
        data = "<a>Разработка грунта</a>".encode("cp1251")
        assert decode_xml(data) == "<a>Разработка грунта</a>"

    def test_invalid_characters_replaced(self):
        assert decode_xml("<a>Раз\x0bработка</a>".encode()) == "<a>Раз работка</a>"

    def test_unknown_encoding(self):
        with pytest.raises(WorkbookFormatError) as exc_info:
            decode_xml(b'<?xml version="1.0" encoding="x-no-such"?><a/>', "bad.xml")
        assert exc_info.value.file_name == "bad.xml"


class TestXmlEstimateReader:
    def test_reads_gge_export(self, reader):
        parsed = reader.read(GGE_ESTIMATE.encode(), "estimate.xml")

        assert parsed.sheet_title == "Локальная смета № 02-01"
        assert parsed.header_row == 0
        assert parsed.columns == {}
        assert [(r.kind, r.name, r.level) for r in parsed.rows] == [
            (RowKind.SECTION, "Земляные работы", 0),
            (RowKind.ITEM, "Разработка грунта экскаватором", 1),
            (RowKind.SUBSECTION, "Крепление", 1),
            (RowKind.ITEM, "Болты строительные", 2),
            (RowKind.ITEM, "Обратная засыпка", 1),
            (RowKind.SECTION, "Кровля", 0),
            (RowKind.ITEM, "Кран на автомобильном ходу", 1),
        ]
        assert [r.row_number for r in parsed.rows] == list(range(1, 8))
        assert parsed.item_count == 4
        assert parsed.section_count == 3
        # Repeated SysID, coefficient line and the summary section
        assert parsed.skipped_rows == 3

    def test_position_values(self, reader):
        rows = reader.read(GGE_ESTIMATE.encode(), "estimate.xml").rows

        excavation = rows[1]
        assert excavation.code == "ФЕР01-01-003-01"
        assert excavation.unit == "1000 м3"
        assert excavation.quantity == Decimal("2.5")
        assert excavation.price == Decimal("1520.40")

        bolts = rows[3]
        assert (bolts.unit, bolts.quantity, bolts.price) == ("т", Decimal("0.1"), Decimal("9000"))

        backfill = rows[4]
        assert backfill.code is None
        assert backfill.price == Decimal("250.00")

    def test_estimate_node_as_root(self, reader):
        parsed = reader.read(PLAIN_ESTIMATE.encode("cp1251"), "roof.gsfx")

        assert parsed.sheet_title == "Смета на кровлю"
        section, item = parsed.rows
        assert (section.kind, section.name) == (RowKind.SECTION, "Раздел 3")
        assert (item.name, item.unit, item.quantity) == ("Устройство кровли", "м2", Decimal("120"))
        assert item.price is None
        assert parsed.skipped_rows == 1

    def test_bom_prefixed_export(self, reader):
        parsed = reader.read(codecs.BOM_UTF8 + GGE_ESTIMATE.encode(), "estimate.xml")
        assert parsed.item_count == 4

    def test_invalid_xml(self, reader):
        with pytest.raises(WorkbookFormatError) as exc_info:
            reader.read(b"<Estimate><Section></Estimate>", "broken.xml")
        assert "invalid XML" in exc_info.value.reason

    def test_no_structure(self, reader):
        with pytest.raises(WorkbookFormatError) as exc_info:
            reader.read(b'<GGE><Estimate><Itog Name="0"/></Estimate></GGE>', "empty.xml")
        assert "no estimate sections" in exc_info.value.reason
