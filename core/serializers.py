from django.contrib.auth import get_user_model, password_validation
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from core.models import ApprovedEmail, AuditLog, Device, ShopSettings

User = get_user_model()


class UserRegistrationSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)
    email = serializers.EmailField()

    class Meta:
        model = User
        fields = ["username", "email", "password", "first_name", "last_name", "role"]
        read_only_fields = ["role"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        if User.objects.filter(email__iexact=normalized_email).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        if ApprovedEmail.lookup(normalized_email) is None:
            raise serializers.ValidationError("This email is not approved for registration.")
        return normalized_email

    def validate_password(self, value):
        password_validation.validate_password(value)
        return value

    def create(self, validated_data):
        approved = ApprovedEmail.lookup(validated_data["email"])
        return User.objects.create_user(
            username=validated_data["username"],
            email=validated_data["email"],
            password=validated_data["password"],
            first_name=validated_data.get("first_name", ""),
            last_name=validated_data.get("last_name", ""),
            role=approved.role,
        )


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = getattr(user, "role", None)
        token["is_superuser"] = user.is_superuser
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            user = User.objects.filter(email__iexact=username.strip()).first()
            if user is not None:
                attrs["username"] = user.get_username()
        return super().validate(attrs)


class UserSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, required=False)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "role",
            "is_active",
            "password",
            "date_joined",
            "last_login",
        ]
        read_only_fields = ["id", "date_joined", "last_login"]

    def validate_password(self, value):
        password_validation.validate_password(value, user=self.instance)
        return value

    def create(self, validated_data):
        password = validated_data.pop("password", None)
        user = User(**validated_data)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save()
        return user

    def update(self, instance, validated_data):
        password = validated_data.pop("password", None)
        instance = super().update(instance, validated_data)
        if password:
            instance.set_password(password)
            instance.save(update_fields=["password"])
        return instance


class ApprovedEmailSerializer(serializers.ModelSerializer):
    class Meta:
        model = ApprovedEmail
        fields = ["id", "email", "role", "created_by", "created_at"]
        read_only_fields = ["id", "created_by", "created_at"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        queryset = ApprovedEmail.objects.filter(email=normalized_email)
        if self.instance is not None:
            queryset = queryset.exclude(id=self.instance.id)
        if queryset.exists():
            raise serializers.ValidationError("This email is already approved.")
        return normalized_email


class DeviceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Device
        fields = ["id", "name", "identifier", "last_seen_at", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "last_seen_at", "created_at", "updated_at"]


class ShopSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShopSettings
        fields = [
            "shop_name",
            "address",
            "phone",
            "email",
            "gstin",
            "state_code",
            "state_name",
            "invoice_prefix",
            "next_invoice_number",
            "logo_url",
            "bank_name",
            "bank_account",
            "bank_ifsc",
            "upi_id",
            "terms_and_conditions",
            "location_code",
            "terminal_id",
            "current_shift",
            "updated_at",
        ]
        read_only_fields = ["updated_at"]

    def validate_gstin(self, value):
        value = (value or "").strip().upper()
        if value and (len(value) != 15 or not value.isalnum()):
            raise serializers.ValidationError("GSTIN must be 15 alphanumeric characters.")
        return value

    def validate_state_code(self, value):
        value = (value or "").strip()
        if len(value) != 2 or not value.isdigit():
            raise serializers.ValidationError("State code must be two digits.")
        return value

    def validate_invoice_prefix(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Invoice prefix cannot be blank.")
        return value

    def validate_next_invoice_number(self, value):
        if value < 1:
            raise serializers.ValidationError("Invoice numbers start at 1.")
        return value


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)
    device_name = serializers.CharField(source="device.name", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "device",
            "device_name",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "event_id",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
