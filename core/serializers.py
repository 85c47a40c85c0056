from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import AuditLog, Business, Location, LocationRole, Subscription

User = get_user_model()


class UserRegistrationSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ["id", "username", "email", "password", "full_name", "phone"]
        read_only_fields = ["id"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        if normalized_email and User.objects.filter(email__iexact=normalized_email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return normalized_email

    def create(self, validated_data):
        return User.objects.create_user(
            username=validated_data["username"],
            email=validated_data.get("email", ""),
            password=validated_data["password"],
            full_name=validated_data.get("full_name", ""),
            phone=validated_data.get("phone", ""),
        )


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["full_name"] = user.full_name
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            user = User.objects.filter(email__iexact=username).first()
            if user is not None:
                attrs["username"] = user.get_username()
        return super().validate(attrs)


class SubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subscription
        fields = [
            "status",
            "plan_name",
            "price_per_location",
            "active_locations_count",
            "billing_cycle_start",
            "billing_cycle_end",
        ]
        read_only_fields = fields


class BusinessSerializer(serializers.ModelSerializer):
    subscription = SubscriptionSerializer(read_only=True)

    class Meta:
        model = Business
        fields = ["id", "owner", "name", "legal_name", "tax_id", "subscription", "created_at", "updated_at"]
        read_only_fields = ["id", "owner", "subscription", "created_at", "updated_at"]


class OnboardingSerializer(serializers.Serializer):
    business_name = serializers.CharField(max_length=255)
    legal_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    tax_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    location_name = serializers.CharField(max_length=255)
    location_type = serializers.ChoiceField(choices=Location.LocationType.choices, default=Location.LocationType.RESTAURANT)
    address = serializers.CharField(max_length=512, required=False, allow_blank=True)


class LocationSerializer(serializers.ModelSerializer):
    business = serializers.PrimaryKeyRelatedField(queryset=Business.objects.all())

    class Meta:
        model = Location
        fields = ["id", "business", "name", "location_type", "address", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_business(self, value):
        request = self.context.get("request")
        user = getattr(request, "user", None)
        if user is not None and not user.is_superuser and value.owner_id != user.pk:
            raise serializers.ValidationError("Locations can only be added to a business you own.")
        if self.instance is not None and value.pk != self.instance.business_id:
            raise serializers.ValidationError("A location cannot be moved to another business.")
        return value


class LocationMemberSerializer(serializers.ModelSerializer):
    user = serializers.PrimaryKeyRelatedField(queryset=User.objects.all(), required=False)
    email = serializers.EmailField(write_only=True, required=False)
    username = serializers.CharField(source="user.username", read_only=True)
    full_name = serializers.CharField(source="user.full_name", read_only=True)

    class Meta:
        model = LocationRole
        fields = ["id", "user", "email", "username", "full_name", "location", "role", "created_at"]
        read_only_fields = ["id", "location", "created_at"]

    def validate(self, attrs):
        email = attrs.pop("email", None)
        if attrs.get("user") is None:
            if not email:
                raise serializers.ValidationError({"user": "Provide either a user id or an email."})
            user = User.objects.filter(email__iexact=email.strip()).first()
            if user is None:
                raise serializers.ValidationError({"email": "No user is registered with this email."})
            attrs["user"] = user
        return attrs


class DashboardSerializer(serializers.Serializer):
    ok = serializers.IntegerField()
    warning = serializers.IntegerField()
    critical = serializers.IntegerField()
    expired = serializers.IntegerField()
    total = serializers.IntegerField()


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)
    business_name = serializers.CharField(source="business.name", read_only=True)
    location_name = serializers.CharField(source="location.name", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "business",
            "business_name",
            "location",
            "location_name",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
