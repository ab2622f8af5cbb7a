"""Packet definitions: which sections each report packet type contains."""

from dataclasses import dataclass

from governance_api.errors import InvalidPacketType

SECTION_TITLES = {
    "executive_summary": "Executive Summary",
    "job_summary": "Job Summary",
    "risk_score": "Risk Assessment",
    "mitigations": "Controls Applied",
    "mitigation_checklist": "Mitigation Checklist",
    "attachments_index": "Evidence Index",
    "audit_timeline": "Audit Timeline",
    "compliance_status": "Compliance Status",
}


@dataclass(frozen=True)
class PacketDefinition:
    packet_type: str
    title: str
    sections: tuple


PACKET_DEFINITIONS = {
    "insurance": PacketDefinition(
        "insurance",
        "Insurance Packet",
        ("executive_summary", "job_summary", "risk_score", "mitigations", "attachments_index", "audit_timeline"),
    ),
    "audit": PacketDefinition(
        "audit",
        "Audit Packet",
        ("executive_summary", "job_summary", "risk_score", "mitigation_checklist", "audit_timeline", "attachments_index"),
    ),
    "incident": PacketDefinition(
        "incident",
        "Incident Packet",
        ("executive_summary", "job_summary", "risk_score", "audit_timeline", "attachments_index"),
    ),
    "client_compliance": PacketDefinition(
        "client_compliance",
        "Client Compliance Packet",
        ("job_summary", "compliance_status", "mitigations", "attachments_index"),
    ),
}

PACKET_TYPES = tuple(PACKET_DEFINITIONS)


def get_packet_definition(packet_type: str) -> PacketDefinition:
    definition = PACKET_DEFINITIONS.get(packet_type)
    if definition is None:
        raise InvalidPacketType(
            f"Invalid packet_type '{packet_type}'. Allowed: {', '.join(PACKET_TYPES)}",
            packet_type=packet_type,
        )
    return definition
