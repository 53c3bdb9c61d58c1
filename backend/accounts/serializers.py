from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Public profile of a platform user, including the role that scopes their booking views."""

    class Meta:
        model = User
        fields = ["id", "username", "email", "display_name", "role"]
        read_only_fields = fields


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Issue a JWT pair for ``{email, password}``; a plain username is still accepted."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields["email"] = serializers.EmailField(required=False)
        self.fields[self.username_field].required = False

    def validate(self, attrs):
        email = (attrs.pop("email", None) or "").strip().lower()
        if email and not attrs.get(self.username_field):
            username = (
                User.objects.filter(email__iexact=email)
                .values_list(User.USERNAME_FIELD, flat=True)
                .first()
            )
            attrs[self.username_field] = username or email
        if not attrs.get(self.username_field):
            raise serializers.ValidationError({"email": "This field is required."})

        data = super().validate(attrs)
        data["user"] = UserSerializer(self.user).data
        return data
