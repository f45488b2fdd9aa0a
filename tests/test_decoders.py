import pytest

from nested_intake.decoders import decode, is_supported, media_type
from nested_intake.errors import DecodeError, UnsupportedContentType

SCENARIO_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<user>
  <name>Joe Bloggs</name>
  <addresses>
    <street>Church Street</street>
  </addresses>
  <addresses>
    <street>Coast Road</street>
  </addresses>
</user>
"""

SINGLETON_XML = b"""<user>
  <name>Joe Bloggs</name>
  <addresses><street>Church Street</street></addresses>
</user>"""


def test_media_type_strips_parameters():
    assert media_type("Application/JSON; charset=utf-8") == "application/json"
    assert media_type(None) == ""
    assert is_supported("application/vnd.api+json")
    assert is_supported("text/xml")
    assert not is_supported("text/plain")


def test_json_body_keeps_field_order():
    node = decode(b'{"user": {"name": "Joe", "addresses": []}}', "application/json")
    assert list(node["user"]) == ["name", "addresses"]


def test_malformed_json():
    with pytest.raises(DecodeError):
        decode(b'{"user": ', "application/json")


def test_unsupported_content_type():
    with pytest.raises(UnsupportedContentType):
        decode(b"name=Joe", "application/x-www-form-urlencoded")


def test_repeated_xml_elements_become_a_list():
    node = decode(SCENARIO_XML, "application/xml")
    assert node == {
        "user": {
            "name": "Joe Bloggs",
            "addresses": [{"street": "Church Street"}, {"street": "Coast Road"}],
        }
    }


def test_single_xml_element_stays_an_object_without_hint():
    node = decode(SINGLETON_XML, "application/xml")
    assert node["user"]["addresses"] == {"street": "Church Street"}


def test_collection_hint_always_yields_a_list():
    node = decode(SINGLETON_XML, "text/xml", collection_fields=["addresses"])
    assert node["user"]["addresses"] == [{"street": "Church Street"}]


def test_collection_hint_on_empty_element_yields_empty_list():
    node = decode(b"<user><name>Joe</name><addresses/></user>", "application/xml", ["addresses"])
    assert node["user"]["addresses"] == []


def test_array_typed_wrapper():
    body = b"""<user>
      <name>Joe</name>
      <addresses type="array">
        <address><street>Church Street</street></address>
      </addresses>
    </user>"""
    node = decode(body, "application/xml")
    assert node["user"]["addresses"] == [{"street": "Church Street"}]


def test_empty_array_typed_wrapper():
    node = decode(b'<user><addresses type="array"/></user>', "application/xml")
    assert node == {"user": {"addresses": []}}


def test_typed_scalars_and_nil():
    body = b"""<user>
      <age type="integer">42</age>
      <score type="float">1.5</score>
      <admin type="boolean">true</admin>
      <born type="date">1980-02-01</born>
      <seen type="datetime">2024-05-01T10:00:00Z</seen>
      <nickname nil="true"/>
      <first-name>Joe</first-name>
    </user>"""
    user = decode(body, "application/xml")["user"]
    assert user["age"] == 42
    assert user["score"] == 1.5
    assert user["admin"] is True
    assert user["born"] == "1980-02-01"
    assert user["seen"] == "2024-05-01T10:00:00+00:00"
    assert user["nickname"] is None
    assert user["first_name"] == "Joe"


def test_bad_typed_scalar_names_the_field():
    with pytest.raises(DecodeError) as excinfo:
        decode(b'<user><age type="integer">old</age></user>', "application/xml")
    assert excinfo.value.field == "user.age"


def test_namespaced_tags_are_stripped():
    node = decode(b'<u:user xmlns:u="urn:x"><u:name>Joe</u:name></u:user>', "application/xml")
    assert node == {"user": {"name": "Joe"}}


def test_malformed_xml():
    with pytest.raises(DecodeError):
        decode(b"<user><name>Joe</user>", "application/xml")


def test_entity_expansion_is_refused():
    body = b"""<?xml version="1.0"?>
    <!DOCTYPE user [<!ENTITY joe "Joe Bloggs">]>
    <user><name>&joe;</name></user>"""
    with pytest.raises(DecodeError):
        decode(body, "application/xml")


def test_hinted_wrapper_yields_its_repeated_items():
    body = b"""<user>
      <name>Joe</name>
      <addresses>
        <address><street>Church Street</street></address>
        <address><street>Coast Road</street></address>
      </addresses>
    </user>"""
    node = decode(body, "application/xml", ["addresses"])
    assert node["user"]["addresses"] == [{"street": "Church Street"}, {"street": "Coast Road"}]


def test_hinted_wrapper_with_one_item():
    body = b"<user><addresses><address><street>A</street></address></addresses></user>"
    node = decode(body, "application/xml", ["addresses"])
    assert node["user"]["addresses"] == [{"street": "A"}]


def test_hinted_array_wrapper_is_not_nested_twice():
    body = b'<user><addresses type="array"><address><street>A</street></address></addresses></user>'
    node = decode(body, "application/xml", ["addresses"])
    assert node["user"]["addresses"] == [{"street": "A"}]


def test_item_holding_only_a_nested_collection_is_not_a_wrapper():
    body = b"""<company>
      <departments>
        <employees><email>a@acme.test</email></employees>
        <employees><email>b@acme.test</email></employees>
      </departments>
    </company>"""
    node = decode(body, "application/xml", ["departments", "employees"])
    assert node["company"]["departments"] == [
        {"employees": [{"email": "a@acme.test"}, {"email": "b@acme.test"}]}
    ]


@pytest.mark.parametrize("literal", [b"NaN", b"Infinity", b"-Infinity"])
def test_non_finite_json_literals_are_rejected(literal):
    with pytest.raises(DecodeError):
        decode(b'{"user": {"score": ' + literal + b"}}", "application/json")


def test_deeply_nested_xml_is_rejected():
    depth = 50_000
    body = b"<a>" * depth + b"</a>" * depth
    with pytest.raises(DecodeError):
        decode(body, "application/xml")
