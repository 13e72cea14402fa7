"""DDL for the tables every client namespace must contain.

Each table gets its own ``<table>_id_seq`` sequence owned by its ``id``
column, so a table created here is indistinguishable from one created with
``SERIAL``. Foreign keys only point inside the same namespace; a
``{schema}`` placeholder in a column definition is replaced by the quoted
namespace name.
"""

from dataclasses import dataclass

from estate.database.identifiers import qualified_name, quote_identifier

FORM_FIELD_TYPES = ("text", "textarea", "email", "number", "checkbox", "select")


@dataclass(frozen=True)
class TableDefinition:
    """A table with a sequence-backed integer primary key."""

    name: str
    columns: tuple[str, ...]
    constraints: tuple[str, ...] = ()

    @property
    def sequence_name(self) -> str:
        return f"{self.name}_id_seq"

    def create_statements(self, schema: str) -> list[str]:
        """Statements creating the sequence and the table in ``schema``.

        Example:
            >>> LINKS.create_statements("client_42")[0]
            'CREATE SEQUENCE IF NOT EXISTS "client_42"."links_id_seq"'
        """
        table = qualified_name(schema, self.name)
        sequence = qualified_name(schema, self.sequence_name)
        quoted_schema = quote_identifier(schema)

        body = [f"id integer NOT NULL DEFAULT nextval('{sequence}'::regclass)"]
        body.extend(column.format(schema=quoted_schema) for column in self.columns)
        body.append("PRIMARY KEY (id)")
        body.extend(
            constraint.format(schema=quoted_schema) for constraint in self.constraints
        )

        return [
            f"CREATE SEQUENCE IF NOT EXISTS {sequence}",
            f"CREATE TABLE IF NOT EXISTS {table} (\n    "
            + ",\n    ".join(body)
            + "\n)",
            f"ALTER SEQUENCE {sequence} OWNED BY {table}.id",
        ]


PROPERTY_COORDINATES = TableDefinition(
    name="property_coordinates",
    columns=(
        "property_id integer NOT NULL",
        "latitude numeric",
        "longitude numeric",
        "created_at timestamp without time zone NOT NULL DEFAULT now()",
        "updated_at timestamp without time zone NOT NULL DEFAULT now()",
    ),
)

LINK_PROFILES = TableDefinition(
    name="link_profiles",
    columns=(
        "user_id integer NOT NULL",
        "slug varchar(100) NOT NULL",
        "title varchar(100) NOT NULL",
        "description text",
        "background_color varchar(20) DEFAULT '#ffffff'",
        "text_color varchar(20) DEFAULT '#000000'",
        "accent_color varchar(20) DEFAULT '#70C7BA'",
        "logo_url text",
        "views integer DEFAULT 0",
        "background_image text",
        "background_pattern text",
        "button_style varchar(20) DEFAULT 'rounded'",
        "button_radius integer DEFAULT 8",
        "font_family varchar(50) DEFAULT 'Inter'",
        "animation varchar(30) DEFAULT 'fade'",
        "custom_css text",
        "custom_theme jsonb",
        "background_saturation integer DEFAULT 100",
        "background_hue_rotate integer DEFAULT 0",
        "background_sepia integer DEFAULT 0",
        "background_grayscale integer DEFAULT 0",
        "background_invert integer DEFAULT 0",
        "background_color_filter varchar(20)",
        "background_color_filter_opacity real DEFAULT 0.3",
        "created_at timestamp without time zone DEFAULT now()",
        "updated_at timestamp without time zone DEFAULT now()",
        "is_paused boolean DEFAULT false",
    ),
    constraints=("UNIQUE (slug)",),
)

LINKS = TableDefinition(
    name="links",
    columns=(
        "profile_id integer NOT NULL",
        "title varchar(100) NOT NULL",
        "url text NOT NULL",
        "icon varchar(255)",
        "enabled boolean DEFAULT true",
        "clicks integer DEFAULT 0",
        "position integer DEFAULT 0",
        "featured boolean DEFAULT false",
        "custom_color varchar(20)",
        "custom_text_color varchar(20)",
        "animation varchar(30)",
        "type varchar(20) DEFAULT 'link'",
        "form_definition jsonb",
        "button_style varchar(20)",
        "user_id integer",
        "created_at timestamp without time zone DEFAULT now()",
        "updated_at timestamp without time zone DEFAULT now()",
    ),
    constraints=(
        "FOREIGN KEY (profile_id) REFERENCES {schema}.link_profiles(id) "
        "ON DELETE CASCADE",
    ),
)

FORM_SUBMISSIONS = TableDefinition(
    name="form_submissions",
    columns=(
        "link_id integer",
        "form_data jsonb NOT NULL",
        "ip_address text",
        "user_agent text",
        "created_at timestamp without time zone DEFAULT now()",
    ),
    constraints=(
        "FOREIGN KEY (link_id) REFERENCES {schema}.links(id) ON DELETE CASCADE",
    ),
)

FORM_RESPONSES = TableDefinition(
    name="form_responses",
    columns=(
        "form_id integer",
        "data jsonb NOT NULL DEFAULT '{{}}'::jsonb",
        "created_at timestamp without time zone DEFAULT now()",
        "ip_address text",
    ),
)

FORM_FIELDS = TableDefinition(
    name="form_fields",
    columns=(
        "link_id integer NOT NULL",
        "field_id varchar(100) NOT NULL",
        "type varchar(20) NOT NULL",
        "label varchar(255) NOT NULL",
        "required boolean DEFAULT false",
        "position integer DEFAULT 0",
    ),
    constraints=(
        "FOREIGN KEY (link_id) REFERENCES {schema}.links(id) ON DELETE CASCADE",
        "CHECK (type IN ("
        + ", ".join(f"'{field_type}'" for field_type in FORM_FIELD_TYPES)
        + "))",
    ),
)

FORM_FIELD_OPTIONS = TableDefinition(
    name="form_field_options",
    columns=(
        "form_field_id integer NOT NULL",
        "value varchar(255) NOT NULL",
        "position integer DEFAULT 0",
    ),
    constraints=(
        "FOREIGN KEY (form_field_id) REFERENCES {schema}.form_fields(id) "
        "ON DELETE CASCADE",
    ),
)

# Creation order matters: referenced tables come first.
ESSENTIAL_TABLES: tuple[TableDefinition, ...] = (
    LINK_PROFILES,
    LINKS,
    FORM_SUBMISSIONS,
    FORM_RESPONSES,
    FORM_FIELDS,
    FORM_FIELD_OPTIONS,
)

ESSENTIAL_TABLE_NAMES = tuple(table.name for table in ESSENTIAL_TABLES)
