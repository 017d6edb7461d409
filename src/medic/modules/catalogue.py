"""Catalogue of the known workspace modules.

Provides the ModuleRegistry lookup and the create_default_registry()
factory that returns a registry with all eleven built-in descriptors
registered in layer order.
"""

from __future__ import annotations

from medic.core.errors import ModuleNotFoundError
from medic.modules.descriptor import ModuleDescriptor


def _files(*extra: str) -> tuple[str, ...]:
    return ("package.json", "tsconfig.json", "src/index.ts", *extra)


AUTH = ModuleDescriptor(
    module_id="auth",
    name="Auth",
    layer=0,
    critical=True,
    description="Authentication and session management",
    required_files=_files(
        "src/services/AuthService.ts",
        "src/services/SessionService.ts",
        "src/models/User.ts",
        "src/models/Session.ts",
        "src/backend/functions/login.ts",
        "src/backend/functions/logout.ts",
        "src/backend/functions/validateSession.ts",
    ),
    required_dependencies=("firebase-admin", "jsonwebtoken", "@types/node"),
)

I18N = ModuleDescriptor(
    module_id="i18n",
    name="I18n",
    layer=1,
    critical=True,
    description="Translations and locale handling",
    required_files=_files(
        "src/services/TranslationService.ts",
        "src/services/LocaleService.ts",
        "src/models/Translation.ts",
        "src/models/Locale.ts",
        "src/locales/en.json",
        "src/locales/es.json",
        "src/locales/fr.json",
        "src/backend/functions/getTranslations.ts",
        "src/backend/functions/updateTranslation.ts",
    ),
    required_dependencies=("i18next", "react-i18next", "@types/node"),
    workspace_dependencies=("auth",),
)

CV_PROCESSING = ModuleDescriptor(
    module_id="cv-processing",
    name="CV Processing",
    layer=1,
    description="CV parsing, analysis and ATS optimization",
    required_files=_files(
        "src/services/CVAnalyzer.ts",
        "src/services/ATSOptimizer.ts",
        "src/services/ContentProcessor.ts",
        "src/models/ProcessedCV.ts",
        "src/models/ATSScore.ts",
        "src/backend/functions/analyzeCV.ts",
        "src/backend/functions/generateCV.ts",
        "src/backend/functions/processCV.ts",
        "src/types/cv.types.ts",
        "src/utils/pdfParser.ts",
        "src/utils/textExtractor.ts",
    ),
    required_dependencies=(
        "pdf-parse",
        "mammoth",
        "openai",
        "@anthropic-ai/sdk",
        "sharp",
        "canvas",
        "node-nlp",
    ),
    workspace_dependencies=("auth",),
    service_configs=(
        "src/config/openai.config.ts",
        "src/config/anthropic.config.ts",
        "src/config/ai.config.ts",
    ),
)

MULTIMEDIA = ModuleDescriptor(
    module_id="multimedia",
    name="Multimedia",
    layer=1,
    description="Video, audio, image and podcast generation",
    required_files=_files(
        "src/services/VideoGenerator.ts",
        "src/services/AudioProcessor.ts",
        "src/services/ImageProcessor.ts",
        "src/services/PodcastGenerator.ts",
        "src/models/MediaFile.ts",
        "src/models/VideoProject.ts",
        "src/backend/functions/generateVideo.ts",
        "src/backend/functions/processAudio.ts",
        "src/backend/functions/createPodcast.ts",
        "src/types/media.types.ts",
        "src/utils/ffmpeg.utils.ts",
    ),
    required_dependencies=(
        "ffmpeg-static",
        "fluent-ffmpeg",
        "sharp",
        "canvas",
        "elevenlabs",
        "d-id",
        "aws-sdk",
        "multer",
    ),
    workspace_dependencies=("auth",),
    service_configs=(
        "src/config/elevenlabs.config.ts",
        "src/config/did.config.ts",
        "src/config/aws.config.ts",
        "src/config/media.config.ts",
    ),
)

ANALYTICS = ModuleDescriptor(
    module_id="analytics",
    name="Analytics",
    layer=1,
    description="Event tracking and reporting",
    required_files=_files(
        "src/services/AnalyticsEngine.ts",
        "src/services/DataProcessor.ts",
        "src/services/ReportGenerator.ts",
        "src/models/AnalyticsData.ts",
        "src/models/Report.ts",
        "src/backend/functions/trackEvent.ts",
        "src/backend/functions/generateReport.ts",
        "src/types/analytics.types.ts",
    ),
    required_dependencies=("date-fns", "@types/node"),
    workspace_dependencies=("auth",),
)

PREMIUM = ModuleDescriptor(
    module_id="premium",
    name="Premium",
    layer=2,
    description="Subscriptions and billing",
    required_files=_files(
        "src/services/SubscriptionService.ts",
        "src/services/BillingService.ts",
        "src/models/Subscription.ts",
        "src/backend/functions/createSubscription.ts",
    ),
    required_dependencies=("stripe", "@types/node"),
    workspace_dependencies=("auth", "analytics"),
)

PUBLIC_PROFILES = ModuleDescriptor(
    module_id="public-profiles",
    name="Public Profiles",
    layer=2,
    description="Shareable public CV profiles",
    required_files=_files(
        "src/services/ProfileService.ts",
        "src/services/ShareService.ts",
        "src/models/PublicProfile.ts",
        "src/backend/functions/publishProfile.ts",
        "src/backend/functions/getPublicProfile.ts",
    ),
    required_dependencies=("qrcode", "@types/node"),
    workspace_dependencies=("auth", "cv-processing", "multimedia"),
)

RECOMMENDATIONS = ModuleDescriptor(
    module_id="recommendations",
    name="Recommendations",
    layer=2,
    description="Career and content recommendations",
    required_files=_files(
        "src/services/RecommendationEngine.ts",
        "src/models/Recommendation.ts",
        "src/backend/functions/getRecommendations.ts",
    ),
    required_dependencies=("ml-matrix", "@types/node"),
    workspace_dependencies=("cv-processing", "analytics"),
)

ADMIN = ModuleDescriptor(
    module_id="admin",
    name="Admin",
    layer=2,
    description="Administration dashboard backend",
    required_files=_files(
        "src/services/AdminService.ts",
        "src/services/UserManagementService.ts",
        "src/backend/functions/getSystemStats.ts",
    ),
    required_dependencies=("@types/node",),
    workspace_dependencies=("auth", "analytics", "premium"),
)

WORKFLOW = ModuleDescriptor(
    module_id="workflow",
    name="Workflow",
    layer=2,
    description="Job application workflows",
    required_files=_files(
        "src/services/WorkflowService.ts",
        "src/models/Workflow.ts",
        "src/backend/functions/runWorkflow.ts",
    ),
    required_dependencies=("node-cron", "@types/node"),
    workspace_dependencies=("auth", "cv-processing"),
)

PAYMENTS = ModuleDescriptor(
    module_id="payments",
    name="Payments",
    layer=2,
    description="Payment processing",
    required_files=_files(
        "src/services/PaymentProcessor.ts",
        "src/services/StripeService.ts",
    ),
    required_dependencies=("stripe", "@types/node"),
    workspace_dependencies=("auth", "premium"),
    service_configs=("src/config/stripe.config.ts",),
)

BUILTIN_DESCRIPTORS: tuple[ModuleDescriptor, ...] = (
    AUTH,
    I18N,
    CV_PROCESSING,
    MULTIMEDIA,
    ANALYTICS,
    PREMIUM,
    PUBLIC_PROFILES,
    RECOMMENDATIONS,
    ADMIN,
    WORKFLOW,
    PAYMENTS,
)


class ModuleRegistry:
    """Registry of module descriptors.

    Pure lookup: descriptors are immutable and the registry holds no
    health state.

    Example:
        registry = create_default_registry()
        auth = registry.get("auth")
        core = registry.by_layer(0)
    """

    def __init__(self) -> None:
        self._descriptors: dict[str, ModuleDescriptor] = {}

    def register(self, descriptor: ModuleDescriptor) -> None:
        """Register a descriptor.

        Raises:
            ValueError: If a descriptor with the same id is already registered.
        """
        if descriptor.module_id in self._descriptors:
            raise ValueError(f"Module '{descriptor.module_id}' is already registered")
        self._descriptors[descriptor.module_id] = descriptor

    def get(self, module_id: str) -> ModuleDescriptor:
        """Get a descriptor by id.

        Raises:
            ModuleNotFoundError: If the id is not registered.
        """
        try:
            return self._descriptors[module_id]
        except KeyError:
            raise ModuleNotFoundError(module_id, valid_module_ids=self.ids()) from None

    def find(self, module_id: str) -> ModuleDescriptor | None:
        """Get a descriptor by id, or None if unknown."""
        return self._descriptors.get(module_id)

    def has(self, module_id: str) -> bool:
        return module_id in self._descriptors

    def all_descriptors(self) -> list[ModuleDescriptor]:
        """All descriptors, in layer order then registration order."""
        return sorted(self._descriptors.values(), key=lambda d: d.layer)

    def ids(self) -> list[str]:
        return [d.module_id for d in self.all_descriptors()]

    def by_layer(self, layer: int) -> list[ModuleDescriptor]:
        return [d for d in self.all_descriptors() if d.layer == layer]

    def critical(self) -> list[ModuleDescriptor]:
        """Modules targeted by emergency stabilization."""
        return [d for d in self.all_descriptors() if d.critical]

    def dependents_of(self, module_id: str) -> list[str]:
        """Ids of modules that declare ``module_id`` as a workspace dependency."""
        return [d.module_id for d in self.all_descriptors() if module_id in d.workspace_dependencies]

    def count(self) -> int:
        return len(self._descriptors)


def create_default_registry() -> ModuleRegistry:
    """Create a registry with every built-in module descriptor.

    Layer 0: auth.
    Layer 1: i18n, cv-processing, multimedia, analytics.
    Layer 2: premium, public-profiles, recommendations, admin, workflow, payments.

    Returns:
        ModuleRegistry with all built-in descriptors registered.
    """
    registry = ModuleRegistry()
    for descriptor in BUILTIN_DESCRIPTORS:
        registry.register(descriptor)
    return registry


__all__ = [
    "BUILTIN_DESCRIPTORS",
    "ModuleRegistry",
    "create_default_registry",
]
