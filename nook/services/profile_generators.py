"""
Mobileconfig generators for the restriction profiles.

Rendering is deterministic: the same type, family name and config always give
byte-identical output, so payload UUIDs are derived from payload identifiers
rather than drawn at random.
"""
import plistlib
import re
import uuid
from typing import Callable, Dict, List, Optional

from nook.core.exceptions import ValidationError
from nook.schemas.profile import CustomProfileConfig, PREDEFINED_PROFILE_TYPES, ProfileType

ORGANIZATION = "Nook MDM"
IDENTIFIER_PREFIX = "com.nook"

# Restrictions shared by every predefined profile before per-type overrides
_LOCKED_DOWN = {
    "allowAppInstallation": False,
    "allowCamera": False,
    "allowExplicitContent": False,
    "allowInAppPurchases": False,
    "allowSafari": False,
    "allowAccountModification": False,
    "allowFindMyFriendsModification": False,
    "allowEnterpriseAppTrust": False,
    "forceEncryptedBackup": True,
    "allowPasswordAutoFill": False,
    "allowPasswordSharing": False,
    "allowPasswordProximityRequests": False,
    "allowAirDrop": False,
    "allowAppRemoval": False,
    "allowAssistant": False,
    "allowBookstore": False,
    "allowCloudDocumentSync": False,
    "allowMusicService": False,
    "allowScreenshot": False,
    "allowSharedStream": False,
    "allowiTunes": False,
    "allowUIConfigurationProfileInstallation": False,
    "allowSettingsModification": False,
    "forceLimitAdTracking": True,
}

PROFILE_METADATA = {
    ProfileType.FIRST_PHONE: {
        "name": "First Phone",
        "slug": "firstphone",
        "description": "First Phone profile - calls and texts only for young children",
        "allowed_apps": ["com.apple.mobilephone", "com.apple.MobileSMS"],
        "restrictions": {
            "allowControlCenter": False,
            "allowNotificationCenter": False,
        },
    },
    ProfileType.EXPLORER: {
        "name": "Explorer",
        "slug": "explorer",
        "description": "Explorer profile - enhanced features for supervised kids",
        "allowed_apps": [
            "com.apple.mobilephone",
            "com.apple.MobileSMS",
            "com.apple.camera",
            "com.google.ios.youtube",
            "com.apple.Maps",
            "com.apple.mobiletimer",
        ],
        "restrictions": {
            "allowCamera": True,
            "allowAssistant": True,
            "allowScreenshot": True,
        },
    },
    ProfileType.GUARDIAN: {
        "name": "Guardian",
        "slug": "guardian",
        "description": "Guardian profile - full access with social media protection",
        "blocked_apps": [
            "com.zhiliaoapp.musically",
            "com.burbn.instagram",
            "com.toyopagroup.picaboo",
            "com.facebook.Facebook",
            "com.atebits.Tweetie2",
            "com.hammerandchisel.discord",
            "com.bumble.app",
            "com.cardify.tinder",
            "com.pof.pof",
            "com.match.match",
        ],
        "restrictions": {
            "allowAppInstallation": True,
            "allowCamera": True,
            "allowSafari": True,
            "allowFindMyFriendsModification": True,
            "allowPasswordAutoFill": True,
            "allowPasswordProximityRequests": True,
            "allowAirDrop": True,
            "allowAppRemoval": True,
            "allowAssistant": True,
            "allowBookstore": True,
            "allowCloudDocumentSync": True,
            "allowMusicService": True,
            "allowScreenshot": True,
            "allowSharedStream": True,
            "allowiTunes": True,
        },
    },
    ProfileType.TIME_OUT: {
        "name": "Time Out",
        "slug": "timeout",
        "description": "Time Out profile - disciplinary mode with phone access only",
        "allowed_apps": ["com.apple.mobilephone"],
        "restrictions": {
            "allowControlCenter": False,
            "allowNotificationCenter": False,
            "allowSpotlightInternetResults": False,
            "allowAppCellularDataModification": False,
        },
    },
}

def _family_slug(family_name: str) -> str:
    return re.sub(r"\s+", "-", family_name.strip().lower())

def _payload_uuid(identifier: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, identifier)).upper()

def _restriction_key(key: str) -> str:
    """allow_camera -> allowCamera; keys already in payload form pass through."""
    if "_" not in key:
        return key
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)

def _restrictions_payload(base_id: str, restrictions: Dict, description: str) -> Dict:
    identifier = f"{base_id}.restrictions"
    payload = {
        "PayloadDescription": description,
        "PayloadDisplayName": "Restrictions",
        "PayloadIdentifier": identifier,
        "PayloadType": "com.apple.applicationaccess",
        "PayloadUUID": _payload_uuid(identifier),
        "PayloadVersion": 1,
    }
    payload.update(restrictions)
    return payload

def _app_list_payload(base_id: str, apps: List[str], blocked: bool) -> Dict:
    if blocked:
        identifier = f"{base_id}.blocker"
        payload_type = "com.apple.functionality.blacklisted-applications"
        key = "BlacklistedApplications"
        display = "Blocked Apps"
    else:
        identifier = f"{base_id}.apps"
        payload_type = "com.apple.functionality.whitelisted-applications"
        key = "WhitelistedApplications"
        display = "Allowed Apps"
    return {
        "PayloadDescription": f"Configures {display.lower()}",
        "PayloadDisplayName": display,
        "PayloadIdentifier": identifier,
        "PayloadType": payload_type,
        "PayloadUUID": _payload_uuid(identifier),
        "PayloadVersion": 1,
        key: list(apps),
    }

def _configuration(base_id: str, display_name: str, description: str, content: List[Dict]) -> bytes:
    document = {
        "PayloadContent": content,
        "PayloadDescription": description,
        "PayloadDisplayName": display_name,
        "PayloadIdentifier": base_id,
        "PayloadOrganization": ORGANIZATION,
        "PayloadRemovalDisallowed": True,
        "PayloadType": "Configuration",
        "PayloadUUID": _payload_uuid(base_id),
        "PayloadVersion": 1,
    }
    return plistlib.dumps(document, fmt=plistlib.FMT_XML, sort_keys=True)

def _predefined_renderer(profile_type: ProfileType) -> Callable[[str], bytes]:
    meta = PROFILE_METADATA[profile_type]

    def render(family_name: str) -> bytes:
        base_id = f"{IDENTIFIER_PREFIX}.{_family_slug(family_name)}.{meta['slug']}"
        restrictions = dict(_LOCKED_DOWN)
        restrictions.update(meta["restrictions"])
        content = [_restrictions_payload(base_id, restrictions, f"Configures restrictions for {meta['name']}")]
        if "blocked_apps" in meta:
            content.append(_app_list_payload(base_id, meta["blocked_apps"], blocked=True))
        else:
            content.append(_app_list_payload(base_id, meta["allowed_apps"], blocked=False))
        return _configuration(base_id, f"{family_name} - {meta['name']}", meta["description"], content)

    return render

def render_custom_profile(family_name: str, config: CustomProfileConfig) -> bytes:
    base_id = f"{IDENTIFIER_PREFIX}.{_family_slug(family_name)}.custom"
    restrictions = {_restriction_key(k): v for k, v in config.restrictions.items()}
    content = [
        _restrictions_payload(base_id, restrictions, "Configures restrictions"),
        _app_list_payload(base_id, config.allowed_apps, blocked=False),
    ]
    return _configuration(
        base_id,
        f"{family_name} - Custom Profile",
        "Custom profile with personalized restrictions",
        content,
    )

PREDEFINED_GENERATORS: Dict[ProfileType, Callable[[str], bytes]] = {
    profile_type: _predefined_renderer(profile_type) for profile_type in PROFILE_METADATA
}

# A predefined type without a generator must fail at import, not at request time.
_missing = set(PREDEFINED_PROFILE_TYPES) - set(PREDEFINED_GENERATORS)
if _missing:
    raise RuntimeError(f"No profile generator for: {sorted(t.value for t in _missing)}")

def render_profile(profile_type: ProfileType, family_name: str, config: Optional[CustomProfileConfig] = None) -> bytes:
    """Render the mobileconfig payload handed to SimpleMDM."""
    if profile_type is ProfileType.CUSTOM:
        if config is None:
            raise ValidationError("Config is required for custom profiles")
        return render_custom_profile(family_name, config)
    return PREDEFINED_GENERATORS[profile_type](family_name)

def default_profile_name(profile_type: ProfileType) -> str:
    if profile_type is ProfileType.CUSTOM:
        return "Custom Profile"
    return PROFILE_METADATA[profile_type]["name"]

def default_profile_description(profile_type: ProfileType) -> str:
    if profile_type is ProfileType.CUSTOM:
        return "Custom profile with personalized restrictions"
    return PROFILE_METADATA[profile_type]["description"]
