"""
Tests for XML response normalization.
"""

import pytest

from ltilink.integrations.lti.error_handler import LTIResponseParseError
from ltilink.integrations.lti.xml_normalizer import (
    ATTRIBUTES_KEY, TEXT_KEY, local_name, node_get, node_list, parse_xml
)


POX_RESPONSE = """<?xml version="1.0" encoding="UTF-8"?>
<imsx_POXEnvelopeResponse xmlns="http://www.imsglobal.org/services/ltiv1p1/xsd/imsoms_v1p0">
  <imsx_POXHeader>
    <imsx_POXResponseHeaderInfo>
      <imsx_version>V1.0</imsx_version>
      <imsx_messageIdentifier>4560</imsx_messageIdentifier>
      <imsx_statusInfo>
        <imsx_codeMajor>success</imsx_codeMajor>
        <imsx_severity>status</imsx_severity>
      </imsx_statusInfo>
    </imsx_POXResponseHeaderInfo>
  </imsx_POXHeader>
  <imsx_POXBody>
    <readResultResponse>
      <result>
        <resultScore>
          <language>en</language>
          <textString>0.91</textString>
        </resultScore>
      </result>
    </readResultResponse>
  </imsx_POXBody>
</imsx_POXEnvelopeResponse>"""


class TestLocalName:
    """Test namespace stripping."""

    def test_strips_clark_namespace(self):
        assert local_name("{http://example.com/ns}codeMajor") == "codeMajor"

    def test_strips_prefix(self):
        assert local_name("ims:codeMajor") == "codeMajor"

    def test_plain_name(self):
        assert local_name("codemajor") == "codemajor"


class TestParseXml:
    """Test conversion of XML documents into nested nodes."""

    def test_single_child_is_collapsed(self):
        nodes = parse_xml("<root><statusinfo><codemajor>Success</codemajor></statusinfo></root>")

        assert nodes == {"statusinfo": {"codemajor": "Success"}}
        assert node_get(nodes, "statusinfo", "codemajor") == "Success"

    def test_repeated_children_become_list_in_order(self):
        nodes = parse_xml(
            "<memberships>"
            "<member><user_id>U1</user_id></member>"
            "<member><user_id>U2</user_id></member>"
            "<member><user_id>U3</user_id></member>"
            "</memberships>"
        )

        assert isinstance(nodes["member"], list)
        assert [m["user_id"] for m in nodes["member"]] == ["U1", "U2", "U3"]

    def test_single_member_is_not_a_list(self):
        nodes = parse_xml("<memberships><member><user_id>U1</user_id></member></memberships>")

        assert nodes["member"] == {"user_id": "U1"}
        assert node_list(nodes["member"]) == [{"user_id": "U1"}]

    def test_namespaced_pox_envelope(self):
        nodes = parse_xml(POX_RESPONSE)

        assert node_get(
            nodes, "imsx_POXHeader", "imsx_POXResponseHeaderInfo", "imsx_statusInfo", "imsx_codeMajor"
        ) == "success"
        assert node_get(
            nodes, "imsx_POXBody", "readResultResponse", "result", "resultScore", "textString"
        ) == "0.91"

    def test_empty_element_is_empty_string(self):
        nodes = parse_xml("<result><resultscore><textstring/></resultscore></result>")

        assert node_get(nodes, "resultscore", "textstring") == ""

    def test_text_is_trimmed(self):
        nodes = parse_xml("<setting><value>\n   blue   \n</value></setting>")

        assert nodes == {"value": "blue"}

    def test_attributes_are_kept(self):
        nodes = parse_xml('<group id="g1"><title>Team A</title></group>')

        assert nodes[ATTRIBUTES_KEY] == {"id": "g1"}
        assert nodes["title"] == "Team A"

    def test_leaf_with_attributes(self):
        nodes = parse_xml('<root><value type="text">hello</value></root>')

        assert nodes["value"] == {ATTRIBUTES_KEY: {"type": "text"}, TEXT_KEY: "hello"}

    def test_malformed_xml_raises_parse_error(self):
        with pytest.raises(LTIResponseParseError) as exc_info:
            parse_xml("<root><unclosed></root>")

        assert exc_info.value.category == "malformed_response"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_document_raises_parse_error(self, text):
        with pytest.raises(LTIResponseParseError):
            parse_xml(text)


class TestNodeHelpers:
    """Test path and list helpers."""

    def test_node_get_missing_step(self):
        nodes = {"a": {"b": "c"}}

        assert node_get(nodes, "a", "x") is None
        assert node_get(nodes, "a", "b", "c") is None
        assert node_get(None, "a") is None

    def test_node_list(self):
        assert node_list(None) == []
        assert node_list("x") == ["x"]
        assert node_list(["x", "y"]) == ["x", "y"]
