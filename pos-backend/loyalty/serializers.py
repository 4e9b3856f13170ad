# pos-backend/loyalty/serializers.py

from rest_framework import serializers

from clients.models import MAX_AMOUNT, MAX_POINTS, PaymentMethod
from common.validators import check_field_rules
from .models import PointsConfig, PointsTransaction

ADJUSTMENT_FIELD_RULES = {
    "points": {"required": True},
    "description": {"required": True, "min_length": 5},
    "direction": {"choices": ["add", "subtract"], "message": "Direction must be 'add' or 'subtract'."},
}


class PointsConfigSerializer(serializers.ModelSerializer):
    earn_rate = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    min_purchase_for_points = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    point_value = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    points_expiry_days = serializers.IntegerField(min_value=1, max_value=36500)
    max_points_per_transaction = serializers.IntegerField(
        min_value=0, max_value=MAX_POINTS, required=False, allow_null=True
    )

    class Meta:
        model = PointsConfig
        fields = [
            "id",
            "tenant",
            "is_active",
            "earn_rate",
            "min_purchase_for_points",
            "max_points_per_transaction",
            "points_expiry_days",
            "point_value",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "tenant", "created_at", "updated_at"]

    def validate_earn_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("Earn rate must be greater than 0.")
        return value


class PointsTransactionSerializer(serializers.ModelSerializer):
    client_id = serializers.IntegerField(read_only=True)
    client_name = serializers.CharField(source="client.name", read_only=True)
    purchase_id = serializers.IntegerField(read_only=True)
    is_credit = serializers.BooleanField(read_only=True)

    class Meta:
        model = PointsTransaction
        fields = [
            "id",
            "client_id",
            "client_name",
            "type",
            "points",
            "is_credit",
            "balance_after",
            "description",
            "sale_id",
            "purchase_id",
            "created_at",
        ]
        read_only_fields = fields


class PointsAdjustmentSerializer(serializers.Serializer):
    """
    Either {points: N >= 1, direction: add|subtract, description}
    or the signed form {points: -N | +N, description}.
    """
    points = serializers.IntegerField(min_value=-MAX_POINTS, max_value=MAX_POINTS)
    direction = serializers.CharField(required=False, allow_blank=True)
    description = serializers.CharField(allow_blank=True, max_length=255)

    def validate(self, attrs):
        errors = check_field_rules(attrs, ADJUSTMENT_FIELD_RULES)
        if errors:
            raise serializers.ValidationError(errors)

        points = attrs["points"]
        direction = (attrs.get("direction") or "").strip()
        if direction:
            if points < 1:
                raise serializers.ValidationError({"points": ["Ensure this value is greater than or equal to 1."]})
            attrs["delta"] = -points if direction == "subtract" else points
        else:
            if points == 0:
                raise serializers.ValidationError({"points": ["Points must be a non-zero integer."]})
            attrs["delta"] = points
        attrs["description"] = attrs["description"].strip()
        return attrs


class RecordPurchaseSerializer(serializers.Serializer):
    total = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, max_value=MAX_AMOUNT)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)
    points_redeemed = serializers.IntegerField(min_value=0, max_value=MAX_POINTS, required=False, default=0)
    items_count = serializers.IntegerField(min_value=0, max_value=MAX_POINTS, required=False, default=0)
    sale_id = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)

    def validate(self, attrs):
        if attrs["payment_method"] == PaymentMethod.POINTS and not attrs.get("points_redeemed"):
            raise serializers.ValidationError(
                {"points_redeemed": ["Payment with points requires redeeming points."]}
            )
        return attrs


class PointsRedeemSerializer(serializers.Serializer):
    client_id = serializers.IntegerField()
    points = serializers.IntegerField(min_value=1, max_value=MAX_POINTS)
    description = serializers.CharField(required=False, allow_blank=True, max_length=255)


class PointsExpireSerializer(serializers.Serializer):
    client_id = serializers.IntegerField()
    points = serializers.IntegerField(min_value=1, max_value=MAX_POINTS)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class ClientDocumentSearchSerializer(serializers.Serializer):
    document = serializers.CharField()
