"""Protobuf message types for the embedding and recommendation services.

Learn: Instead of shipping protoc output, the two .proto files are
described here as FileDescriptorProto objects and loaded into a private
DescriptorPool. GetMessageClass turns each descriptor into a regular
protobuf message class, so the bytes on the wire are identical to what
generated *_pb2 modules would produce.

    emb.proto                               rec.proto
    ─────────                               ─────────
    UserEmbeddingRequest                    RecommendationRequest
      user_id, bio, skills[], interests[]     id
    ProjectEmbeddingRequest                 RecommendationResponse
      project_id, title, description,         ids[]
      skills[], user_id
    UpdateStatusRequest   id, status
    DeleteEmbeddingRequest  id
    EmbeddingResponse     success, message
"""

from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf.message_factory import GetMessageClass

_F = descriptor_pb2.FieldDescriptorProto

STRING = _F.TYPE_STRING
BOOL = _F.TYPE_BOOL
SINGLE = _F.LABEL_OPTIONAL
REPEATED = _F.LABEL_REPEATED


# ─── Service paths ────────────────────────────────────────

USER_EMBEDDING_SERVICE = "emb.UserEmbeddingService"
PROJECT_EMBEDDING_SERVICE = "emb.ProjectEmbeddingService"
RECOMMENDATION_SERVICE = "rec.RecommendationService"


# ─── Descriptors ──────────────────────────────────────────

_EMB_MESSAGES = {
    "UserEmbeddingRequest": [
        ("user_id", STRING, SINGLE),
        ("bio", STRING, SINGLE),
        ("skills", STRING, REPEATED),
        ("interests", STRING, REPEATED),
    ],
    "ProjectEmbeddingRequest": [
        ("project_id", STRING, SINGLE),
        ("title", STRING, SINGLE),
        ("description", STRING, SINGLE),
        ("skills", STRING, REPEATED),
        ("user_id", STRING, SINGLE),
    ],
    "UpdateStatusRequest": [
        ("id", STRING, SINGLE),
        ("status", BOOL, SINGLE),
    ],
    "DeleteEmbeddingRequest": [
        ("id", STRING, SINGLE),
    ],
    "EmbeddingResponse": [
        ("success", BOOL, SINGLE),
        ("message", STRING, SINGLE),
    ],
}

_REC_MESSAGES = {
    "RecommendationRequest": [
        ("id", STRING, SINGLE),
    ],
    "RecommendationResponse": [
        ("ids", STRING, REPEATED),
    ],
}


def _file_descriptor(
    name: str, package: str, messages: dict[str, list[tuple[str, int, int]]]
) -> descriptor_pb2.FileDescriptorProto:
    """Build a proto3 file descriptor. Field numbers follow declaration order."""
    fdp = descriptor_pb2.FileDescriptorProto(
        name=name, package=package, syntax="proto3"
    )
    for message_name, fields in messages.items():
        message = fdp.message_type.add(name=message_name)
        for number, (field_name, field_type, label) in enumerate(fields, start=1):
            message.field.add(
                name=field_name, number=number, type=field_type, label=label
            )
    return fdp


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(
    _file_descriptor("findme/emb.proto", "emb", _EMB_MESSAGES).SerializeToString()
)
_pool.AddSerializedFile(
    _file_descriptor("findme/rec.proto", "rec", _REC_MESSAGES).SerializeToString()
)


def _message(full_name: str):
    return GetMessageClass(_pool.FindMessageTypeByName(full_name))


UserEmbeddingRequest = _message("emb.UserEmbeddingRequest")
ProjectEmbeddingRequest = _message("emb.ProjectEmbeddingRequest")
UpdateStatusRequest = _message("emb.UpdateStatusRequest")
DeleteEmbeddingRequest = _message("emb.DeleteEmbeddingRequest")
EmbeddingResponse = _message("emb.EmbeddingResponse")

RecommendationRequest = _message("rec.RecommendationRequest")
RecommendationResponse = _message("rec.RecommendationResponse")
