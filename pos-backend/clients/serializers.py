# pos-backend/clients/serializers.py

from rest_framework import serializers

from common.validators import check_field_rules
from .models import MAX_ID, Client, ClientPurchase, ClientStatus, DocumentType

# Field rules for the registration / edit form. Keys are the wire names.
CLIENT_FIELD_RULES = {
    "name": {"required": True, "min_length": 2},
    "last_name": {"required": True, "min_length": 2},
    "phone": {
        "required": True,
        "pattern": r"\+?[0-9\s\-()]+",
        "message": "Enter a valid phone number.",
    },
    "document_type": {
        "required": True,
        "choices": DocumentType.values,
    },
    "document_number": {
        "required": True,
        "pattern": r"[0-9A-Za-z-]+",
        "message": "Document numbers may only contain letters, digits and hyphens.",
    },
    "email": {
        "pattern": r"\S+@\S+\.\S+",
        "message": "Enter a valid email address.",
    },
    "status": {"choices": ClientStatus.values},
}

# wire name -> model field
WIRE_TO_MODEL = {
    "name": "first_name",
    "last_name": "last_name",
    "document_type": "document_type",
    "document_number": "document",
    "phone": "phone",
    "email": "email",
    "address": "address",
    "city": "city",
    "birth_date": "birth_date",
    "status": "status",
}


class ClientSerializer(serializers.ModelSerializer):
    is_active = serializers.BooleanField(read_only=True)
    document_number = serializers.CharField(source="document", read_only=True)

    class Meta:
        model = Client
        fields = [
            "id",
            "tenant",
            "name",
            "first_name",
            "last_name",
            "document_type",
            "document",
            "document_number",
            "phone",
            "email",
            "address",
            "city",
            "birth_date",
            "status",
            "is_active",
            "points",
            "total_purchases",
            "total_spent",
            "last_purchase",
            "created_by",
            "updated_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ClientListSerializer(serializers.ModelSerializer):
    document_number = serializers.CharField(source="document", read_only=True)

    class Meta:
        model = Client
        fields = [
            "id",
            "name",
            "first_name",
            "last_name",
            "document_type",
            "document",
            "document_number",
            "phone",
            "email",
            "city",
            "status",
            "points",
            "total_purchases",
            "total_spent",
            "last_purchase",
        ]


class ClientWriteSerializer(serializers.Serializer):
    """
    Registration / edit payload. ``document`` is accepted as an alias of
    ``document_number``. Rules live in CLIENT_FIELD_RULES.
    """
    name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    last_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    document_type = serializers.CharField(required=False, allow_blank=True)
    document_number = serializers.CharField(required=False, allow_blank=True, max_length=64)
    document = serializers.CharField(required=False, allow_blank=True, max_length=64, write_only=True)
    phone = serializers.CharField(required=False, allow_blank=True, max_length=32)
    email = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=254)
    address = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)
    city = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=100)
    birth_date = serializers.DateField(required=False, allow_null=True)
    status = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        alias = attrs.pop("document", None)
        if alias is not None and "document_number" not in attrs:
            attrs["document_number"] = alias

        errors = check_field_rules(attrs, CLIENT_FIELD_RULES, partial=self.partial)
        if errors:
            raise serializers.ValidationError(errors)
        return attrs

    def to_model_data(self) -> dict:
        """Validated wire data keyed by model field name."""
        data = {}
        for wire, model_field in WIRE_TO_MODEL.items():
            if wire in self.validated_data:
                data[model_field] = self.validated_data[wire]
        if data.get("status") == "":
            data.pop("status")
        return data


class DocumentValidationSerializer(serializers.Serializer):
    document_type = serializers.CharField()
    document_number = serializers.CharField(allow_blank=True)
    exclude_id = serializers.IntegerField(min_value=1, max_value=MAX_ID, required=False, allow_null=True)


class ClientPurchaseSerializer(serializers.ModelSerializer):
    client_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = ClientPurchase
        fields = [
            "id",
            "client_id",
            "sale_id",
            "total",
            "items_count",
            "payment_method",
            "points_earned",
            "points_used",
            "created_at",
        ]
        read_only_fields = fields
